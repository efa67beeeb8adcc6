"""
Structured logging configuration using structlog.

Sweeps log through the stdlib ``logging`` module; structlog's formatter
renders those records as JSON lines in production and colored console
output in development. Every record emitted while a sweep runs carries the
sweep's session id and chain through structlog's context variables.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, Union

import structlog

from .config import settings


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog for structured logging.

    Args:
        log_level: Override log level (default: from settings.log_level)
        json_logs: Force JSON (True) or console (False) rendering. Defaults to
            console output at DEBUG level and JSON otherwise.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records go through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("uvicorn.access", "httpcore", "httpx", "hpack"):
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def sweep_log_context(session_id: str, chain: Union[int, str]) -> Iterator[None]:
    """Bind the sweep id and chain to every log record emitted inside the block."""
    with structlog.contextvars.bound_contextvars(sweep_id=session_id, chain=str(chain)):
        yield
