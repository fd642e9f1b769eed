"""Persistence layer: SQLAlchemy models, sessions and partial updates."""
