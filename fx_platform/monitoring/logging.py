"""
Structured logging configuration.

structlog renders our own events as JSON and hands them to the stdlib root
logger. The root handler formats every record, ours and those of uvicorn,
SQLAlchemy or httpx, as one JSON line via python-json-logger.
"""
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from fx_platform.config import Settings, get_settings

EventDict = Dict[str, Any]

# Logger name -> level applied regardless of the configured root level
LIBRARY_LEVELS: Dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def service_context(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Processor stamping each event with the service name and environment."""
    app_name, app_env = settings.app_name, settings.app_env

    def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_name", app_name)
        event_dict.setdefault("app_env", app_env)
        return event_dict

    return add_service_context


def _processors(settings: Settings) -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        service_context(settings),
        structlog.processors.JSONRenderer(),
    ]


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; the root handlers are replaced each time.

    Args:
        settings: Settings to read the level and service context from,
            defaults to the process settings
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(_json_handler())

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(max(level, library_level))
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
