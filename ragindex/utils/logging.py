"""Structured logging setup for ragindex using structlog.

One shared processor chain (context vars, level, timestamps, exception
info) feeds either a coloured ``ConsoleRenderer`` during development or a
``JSONRenderer`` in production.  ``APP_ENV=production`` selects JSON unless
the caller forces it with ``json_output``.

Stdlib ``logging`` is routed through the same formatter so records from
``openai``, ``httpx`` and ``aiosqlite`` come out in the same shape as our
own events.

Ingestion jobs bind ``job_id`` and ``scope_id`` with :func:`job_context`
so every event emitted while the job runs carries them without each
service having to pass them along.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_NOISY_LIBRARIES = ("httpx", "httpcore", "openai", "aiosqlite")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    app_env: str | None = None,
) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output regardless of the environment.
        app_env: Deployment environment; read from ``APP_ENV`` when omitted.

    Returns:
        A configured structlog BoundLogger.
    """
    env = app_env or os.environ.get("APP_ENV", "development")
    use_json = json_output or env == "production"
    level = logging.getLevelName(log_level.upper())

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Client libraries log every request at INFO; keep them one level quieter.
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger, configuring defaults on first use.

    Args:
        name: Logger name, typically the module's ``__name__``.

    Returns:
        A structlog BoundLogger bound with the given name.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


@contextmanager
def job_context(job_id: str, scope_id: str) -> Iterator[None]:
    """Bind ``job_id`` and ``scope_id`` to every log event inside the block."""
    with structlog.contextvars.bound_contextvars(job_id=job_id, scope_id=scope_id):
        yield
