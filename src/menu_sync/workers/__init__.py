"""Background processing: Celery app, tasks and the event dispatcher."""
