import logging
from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import Any

import structlog

# Libraries that log every outbound call at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    level: int | str = logging.INFO,
    json_logs: bool = True,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Args:
        level: Root log level, as a number or a name such as ``"DEBUG"``
        json_logs: Render one JSON object per line; when False, render
            human-readable console lines for local development
        quiet_loggers: Loggers held at WARNING regardless of ``level``
    """
    if isinstance(level, str):
        level = level.upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        # The console renderer formats exceptions itself
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger with the given name."""
    return structlog.get_logger(name)


def request_context(
    request_id: str | None = None, **kwargs: Any
) -> AbstractContextManager[None]:
    """Bind request identifiers into the structlog context for the duration of a block."""
    context: dict[str, Any] = {"request_id": request_id or "unknown_request"}
    context.update({k: v for k, v in kwargs.items() if v is not None})
    return structlog.contextvars.bound_contextvars(**context)
