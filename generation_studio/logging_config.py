"""
Structured logging for the Generation Studio service.

All output goes to stdout through one handler on the root logger, so
structlog events from the service and standard library records from
Uvicorn, SQLAlchemy, aiosqlite and httpx come out in the same shape::

    {"event": "generation_created", "level": "INFO",
     "timestamp": "2026-01-01T12:00:00.000000Z",
     "service_name": "generation-studio-api",
     "correlation_id": "…", "generation_id": "…", "user_id": "…"}

``correlation_id`` is only present inside a request: it is bound to the
structlog contextvars by ``CorrelationIdMiddleware``.

Two renderers are available.  ``json`` (the default) is meant for log
collectors; ``console`` renders the same key/value pairs as aligned,
uncoloured text for local development.
"""

import logging
import sys

import structlog

SERVICE_NAME = "generation-studio-api"

LOG_FORMATS = ("json", "console")

# Library loggers that are chatty at INFO.  They only follow the configured
# level when it is WARNING or stricter.
_QUIETED_LIBRARY_LOGGERS = (
    "sqlalchemy.engine",
    "aiosqlite",
    "multipart",
    "httpcore",
)


def _resolve_log_level(log_level: str) -> int:
    """Map a level name to its number, falling back to INFO for unknown names."""
    resolved_level = logging.getLevelName(log_level.strip().upper())
    return resolved_level if isinstance(resolved_level, int) else logging.INFO


def _build_service_name_processor(service_name: str) -> structlog.types.Processor:
    def add_service_name(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict.setdefault("service_name", service_name)
        return event_dict

    return add_service_name


def _uppercase_level(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    level_name = event_dict.get("level")
    if isinstance(level_name, str):
        event_dict["level"] = level_name.upper()
    return event_dict


def _build_renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = SERVICE_NAME,
) -> None:
    """
    Route structlog and standard library logging to stdout.

    Calling it again replaces the previous configuration; the root logger
    never ends up with more than one handler.

    Args:
        log_level: Minimum level name.  Unknown names mean INFO.
        log_format: ``"json"`` or ``"console"``.
        service_name: Value of the ``service_name`` field on every record.

    Raises:
        ValueError: If ``log_format`` is not one of ``LOG_FORMATS``.
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {log_format!r}.")

    level = _resolve_log_level(log_level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _build_service_name_processor(service_name),
        structlog.stdlib.add_log_level,
        _uppercase_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _build_renderer(log_format),
            ],
            foreign_pre_chain=shared_processors,
        ),
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(stdout_handler)
    root_logger.setLevel(level)

    for library_logger_name in _QUIETED_LIBRARY_LOGGERS:
        logging.getLogger(library_logger_name).setLevel(max(level, logging.WARNING))
