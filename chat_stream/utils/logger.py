"""Logging utilities for the application.

Loguru is the only logging backend.  :func:`setup_logging` installs the
console and file sinks, and routes records emitted through the standard
``logging`` module (httpx, uvicorn) into Loguru.  Log lines carry an
``exchange`` field so that everything logged while one question is
being answered can be grepped together; :func:`exchange_logger` returns
a logger bound to a given exchange.
"""

from __future__ import annotations

import sys
import logging
from pathlib import Path

from loguru import logger

from ..config.app_config import AppConfig, get_app_config

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[exchange]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# Libraries whose INFO output repeats every request line.
NOISY_LOGGERS = ("httpx", "httpcore")


class InterceptHandler(logging.Handler):
    """Forward standard logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except (KeyError, ValueError):
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(app_config: AppConfig | None = None) -> "loguru.Logger":
    """Configure Loguru logging for the application.

    Parameters
    ----------
    app_config: AppConfig, optional
        Settings to configure from.  Defaults to the cached
        application configuration.

    Returns
    -------
    loguru.Logger
        The configured Loguru logger instance.
    """
    app_config = app_config or get_app_config()

    logger.remove()
    logger.configure(extra={"exchange": "-"})

    logger.add(
        sys.stdout,
        level=app_config.log_level,
        format=LOG_FORMAT,
        colorize=True,
        backtrace=True,
        diagnose=app_config.app_debug,
    )

    if app_config.log_file:
        Path(app_config.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            app_config.log_file,
            level=app_config.log_level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
            backtrace=True,
            diagnose=app_config.app_debug,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.WARNING, force=True)
    library_level = logging.DEBUG if app_config.app_debug else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logger.info("Logging configured successfully")
    logger.debug("App environment: {}", app_config.app_env)
    logger.debug("Log level: {}", app_config.log_level)

    return logger


def exchange_logger(exchange_id: str) -> "loguru.Logger":
    """Return a logger whose records are tagged with ``exchange_id``."""
    return logger.bind(exchange=exchange_id[:8])
