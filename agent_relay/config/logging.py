"""
Logging Configuration
=====================

structlog on top of the standard logging tree.

``setup_logging`` is called by the application factory; importing this
module configures nothing. Everything under the ``agent_relay`` logger
goes to the console, and to rotating files in ``log_dir`` when
``log_to_file`` is set. Library loggers only reach the console.
"""

import logging
import logging.config
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import Processor

from .settings import Settings, get_settings

APP_LOGGER = "agent_relay"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

LIBRARY_LOG_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "WARNING",
    "fastapi": "INFO",
    "aiohttp": "WARNING",
    "redis": "WARNING",
}


def wants_json(settings: Settings) -> bool:
    """JSON lines unless explicitly disabled; production defaults to JSON."""
    if settings.log_json is not None:
        return settings.log_json
    return settings.environment == "production"


def _processors(settings: Settings) -> List[Processor]:
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if wants_json(settings):
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Plain text when lines also land in files
        processors.append(structlog.dev.ConsoleRenderer(colors=not settings.log_to_file))
    return processors


def _file_handler(path: Path, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "file",
        "filename": str(path),
        "maxBytes": LOG_FILE_MAX_BYTES,
        "backupCount": LOG_FILE_BACKUPS,
        "encoding": "utf-8",
        "delay": True,
    }


def get_logging_config(settings: Settings) -> Dict[str, Any]:
    """Build the ``dictConfig`` for the relay."""
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": settings.log_level,
            "formatter": "json" if wants_json(settings) else "message",
            "stream": sys.stdout,
        },
    }
    if settings.log_to_file:
        handlers["relay_file"] = _file_handler(
            settings.log_dir / "agent_relay.log", settings.log_level
        )
        handlers["error_file"] = _file_handler(settings.log_dir / "errors.log", "ERROR")

    loggers: Dict[str, Dict[str, Any]] = {
        APP_LOGGER: {
            "level": settings.log_level,
            "handlers": list(handlers),
            "propagate": False,
        },
    }
    for name, level in LIBRARY_LOG_LEVELS.items():
        loggers[name] = {"level": level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            # structlog has already rendered the event
            "message": {"format": "%(message)s"},
            "file": {"format": "%(asctime)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"},
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog and the standard logging tree."""
    settings = settings or get_settings()
    if settings.log_to_file:
        settings.log_dir.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(get_logging_config(settings))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
