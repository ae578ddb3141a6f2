"""
Logging setup for the API server and the CLI jobs.

Both module loggers (``logging.getLogger(__name__)``) and structlog loggers
end up in one handler on the root logger, rendered as JSON lines or, when
running at DEBUG, as console output. Per-run context such as the chain being
refreshed is attached through ``structlog.contextvars``.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from .config import settings

# Libraries that log every request at INFO
NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "redis")


def _processors(json_logs: bool) -> list:
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Install the root handler and configure structlog.

    Args:
        log_level: Level name; defaults to ``settings.log_level``.
        json_logs: Force JSON (True) or console (False) output. By default
            console output is used only at DEBUG.
    """
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    if json_logs is None:
        json_logs = level > logging.DEBUG

    shared = _processors(json_logs)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    # CLI commands print results on stdout, so logs go to stderr
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@contextmanager
def log_context(**values) -> Iterator[None]:
    """Attach key/value pairs to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


__all__ = ["setup_logging", "log_context", "NOISY_LOGGERS"]
