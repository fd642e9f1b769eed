"""
Logging configuration for Menu Sync.

Provides centralized logging with colored console output and a rotating
log file. Configured from the LOG_LEVEL, LOG_DIR and DEBUG_MODE
environment variables.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import colorlog

ROOT_LOGGER_NAME = "menu_sync"


class MenuSyncLogger:
    """Configures the package root logger; module loggers propagate to it."""

    def __init__(self, name: str = ROOT_LOGGER_NAME):
        self.name = name
        self.logger = logging.getLogger(name)
        self._setup_logger()

    def _setup_logger(self) -> None:
        """Setup logger with file and console handlers."""
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        log_dir = os.getenv("LOG_DIR", "./logs")
        debug_mode = os.getenv("DEBUG_MODE", "false").lower() == "true"

        if debug_mode:
            self.logger.setLevel(logging.DEBUG)
        else:
            self.logger.setLevel(getattr(logging, log_level, logging.INFO))

        self.logger.handlers.clear()
        self._setup_console_handler(debug_mode)
        self._setup_file_handler(log_dir, debug_mode)

        self.logger.propagate = False

    def _setup_console_handler(self, debug_mode: bool) -> None:
        """Setup colored console logging."""
        console_handler = colorlog.StreamHandler(sys.stdout)

        color_format = (
            "%(log_color)s%(asctime)s [%(levelname)8s] "
            "%(name)s.%(funcName)s:%(lineno)d - %(message)s"
        )

        if not debug_mode:
            color_format = (
                "%(log_color)s%(asctime)s [%(levelname)8s] "
                "%(name)s - %(message)s"
            )

        formatter = colorlog.ColoredFormatter(
            color_format,
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            }
        )

        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

    def _setup_file_handler(self, log_dir: str, debug_mode: bool) -> None:
        """Setup file logging with rotation."""
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.warning(f"File logging disabled, cannot create {log_dir}: {e}")
            return

        log_file = os.path.join(log_dir, f"{self.name}.log")

        # 10MB per file, keep 5 files
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )

        file_format = (
            "%(asctime)s [%(levelname)8s] %(name)s.%(funcName)s:%(lineno)d - "
            "%(message)s"
        )

        if not debug_mode:
            file_format = "%(asctime)s [%(levelname)8s] %(name)s - %(message)s"

        file_handler.setFormatter(logging.Formatter(file_format, datefmt="%Y-%m-%d %H:%M:%S"))
        self.logger.addHandler(file_handler)

    def get_logger(self) -> logging.Logger:
        """Get the configured logger instance."""
        return self.logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Loggers outside the ``menu_sync`` namespace are nested under it so that
    every message reaches the package handlers.

    Args:
        name: Logger name. If None, uses the caller's module name.

    Returns:
        Logger instance.
    """
    if name is None:
        frame = sys._getframe(1)
        name = frame.f_globals.get("__name__", ROOT_LOGGER_NAME)

    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def setup_logging() -> logging.Logger:
    """
    Setup application-wide logging configuration.

    This should be called once at application or worker startup.
    """
    root_logger = MenuSyncLogger(ROOT_LOGGER_NAME).get_logger()
    root_logger.info("Logging system initialized")
    root_logger.debug(f"Handlers: {[h.__class__.__name__ for h in root_logger.handlers]}")
    return root_logger
