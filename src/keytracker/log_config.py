"""Structured logging for the tracker runners.

Services log through structlog; the HTTP clients and workers use stdlib
loggers. Both go through one root handler whose ``ProcessorFormatter``
renders a single JSON or console stream, tagged with the service and
environment and with any bound context such as ``sync_type``.
"""

import logging

import structlog

from keytracker.config import Settings

SERVICE_NAME = "keytracker"
HANDLER_NAME = "keytracker"
# Per-request and per-statement chatter stays at WARNING unless asked for
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine", "alembic.runtime.migration")


def _service_context(environment: str) -> structlog.types.Processor:
    def add_service(_logger: object, _method: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service


def setup_logging(settings: Settings) -> None:
    """Configure structlog and route stdlib records through the same renderer.

    Safe to call more than once; the previous tracker handler is replaced.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    json_output = settings.log_format == "json"

    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _service_context(settings.environment),
    ]

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    final: list[structlog.types.Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_output:
        final += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final.append(structlog.dev.ConsoleRenderer())

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(foreign_pre_chain=shared, processors=final))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
