"""
Event dispatcher that decouples request handling from background work.

Event names are mapped to Celery task names; delivery is at-least-once.
"""

from typing import Any, Dict, Optional

from celery import Celery

from menu_sync.utils.exceptions import ConfigurationError
from menu_sync.workers.celery_app import celery_app
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

WEBHOOK_ENTRY_EVENT = "whatsapp/webhook.entry"

EVENT_TASKS = {
    WEBHOOK_ENTRY_EVENT: "menu_sync.workers.tasks.process_webhook_entry",
}


class TaskDispatcher:
    """Sends named events to the Celery broker."""

    def __init__(self, app: Optional[Celery] = None):
        self.app = app or celery_app

    def send(self, event_name: str, payload: Dict[str, Any]) -> str:
        """
        Queue an event for asynchronous processing.

        Args:
            event_name: Registered event name
            payload: JSON-serializable keyword arguments for the task

        Returns:
            Celery task id

        Raises:
            ConfigurationError: if no task handles the event
        """
        task_name = EVENT_TASKS.get(event_name)
        if task_name is None:
            raise ConfigurationError(f"No task registered for event {event_name}")

        result = self.app.send_task(task_name, kwargs=payload)
        logger.debug(f"Queued {event_name} as task {result.id}")
        return result.id


_dispatcher: Optional[TaskDispatcher] = None


def get_dispatcher() -> TaskDispatcher:
    """Get or create global dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = TaskDispatcher()
    return _dispatcher
