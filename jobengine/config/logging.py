import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings


def _shared_processors(debug: bool) -> list:
    """Processors applied to structlog and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        (
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
            if debug
            else structlog.processors.CallsiteParameterAdder(parameters=[])
        ),
    ]


def setup_logging(log_settings: Settings | None = None) -> None:
    """
    Configure structured logging with structlog.

    The service and lease modules log through stdlib ``logging`` with
    ``extra=`` fields (job_id, worker_id, ...); those fields are lifted into the
    structured event so both kinds of log line render the same way.
    """
    log_settings = log_settings or settings
    level = getattr(logging, log_settings.log_level)
    shared = _shared_processors(log_settings.debug)

    # JSON formatting for production, pretty printing for development
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_settings.debug
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder()],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                # ConsoleRenderer formats exceptions itself
                *([] if log_settings.debug else [structlog.processors.format_exc_info]),
                renderer,
            ],
        )
    )

    # Repeated setup (app factory, then worker) swaps out only our handler
    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, "_jobengine", False)]:
        root.removeHandler(existing)
    handler._jobengine = True
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Add request-specific context to all log messages."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_worker_context(worker_id: str, **context: Any) -> None:
    """Attach the worker identity to every log line emitted by this task."""
    structlog.contextvars.bind_contextvars(worker_id=worker_id, **context)
