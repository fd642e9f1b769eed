"""Shared utilities: logging, configuration and exceptions."""
