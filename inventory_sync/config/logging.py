"""
Logging Configuration for the Inventory Sync Service

structlog events rendered through the stdlib root logger: JSON in
production, colored console output during development. The API process
and the Prefect maintenance flow share this setup.

Every event carries the service name and version plus whatever sync
context is bound for the current task (request id, session id, chunk
index), so the lines of one chunked delivery can be followed across
requests.
"""

import logging
import sys
from typing import Any, Iterable, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level
from structlog.types import EventDict, Processor, WrappedLogger

from inventory_sync.config.settings import Settings, get_settings

SYNC_CONTEXT_KEYS = ("request_id", "sync_session_id", "chunk_index")

# Loggers whose records go through our handler instead of their own
ADOPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

# Echo is decided by DatabaseSettings.echo, not by the root level
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def bind_sync_context(**values: Any) -> None:
    """
    Bind sync identifiers for the rest of the current task.

    Unknown keys are rejected and None values are skipped.
    """
    unknown = set(values) - set(SYNC_CONTEXT_KEYS)
    if unknown:
        raise ValueError(f"Unknown sync context keys: {sorted(unknown)}")
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def clear_sync_context() -> None:
    structlog.contextvars.unbind_contextvars(*SYNC_CONTEXT_KEYS)


class ServiceInfo:
    """Processor stamping the service name and version on every event."""

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.name)
        event_dict.setdefault("version", self.version)
        return event_dict


class TruncateLongValues:
    """Processor cutting long string values, such as raw payload excerpts."""

    def __init__(self, max_length: int):
        self.max_length = max_length

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in event_dict.items():
            if key != "event" and isinstance(value, str) and len(value) > self.max_length:
                event_dict[key] = f"{value[:self.max_length]}... [{len(value)} chars]"
        return event_dict


def build_processors(settings: Settings) -> list:
    """Processors shared by structlog events and foreign stdlib records"""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso"),
        ServiceInfo(settings.app_name, settings.version),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        TruncateLongValues(settings.monitoring.log_max_value_length),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _route_loggers(handler: logging.Handler, level: int, names: Iterable[str]) -> None:
    for name in names:
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(level)


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the API or the maintenance flow.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override the renderer ("json" or "text")
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    log_format = log_format or settings.monitoring.log_format
    numeric_level = getattr(logging, level, logging.INFO)

    shared_processors = build_processors(settings)
    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(ProcessorFormatter(processor=_renderer(log_format), foreign_pre_chain=shared_processors))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    _route_loggers(handler, numeric_level, ADOPTED_LOGGERS)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=log_format,
        environment=settings.app_env,
    )
