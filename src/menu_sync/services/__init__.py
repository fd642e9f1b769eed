"""Domain services: tenant resolution, catalog mapping and sync, webhook guard."""
