"""Structured logging configuration using structlog.

Engine, scheduler, action and integration modules log through
``structlog.get_logger``; API, service and worker modules use stdlib
``logging`` with %-style messages. Both end up on the same root handler,
rendered as JSON in production and as colored console lines otherwise.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

import structlog
from app.config import Settings, get_settings

# Third-party loggers and the level they are held at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery": logging.INFO,
}


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(settings: Settings):
    if settings.is_development or settings.LOG_FORMAT == "text":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Optional[Settings] = None, stream: TextIO = sys.stdout) -> None:
    """Route structlog and stdlib logging through one formatter.

    Safe to call more than once; the root handler is replaced each time.
    """
    settings = settings or get_settings()
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings),
            ],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.SQLALCHEMY_ECHO else logging.WARNING
    )


@contextmanager
def run_log_context(run_id: str, **fields) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``run_id`` and ``fields``.

    Further keys (``graph_id`` once the graph is loaded) can be bound with
    ``structlog.contextvars.bind_contextvars`` and are dropped on exit too.
    """
    before = set(structlog.contextvars.get_contextvars())
    tokens = structlog.contextvars.bind_contextvars(run_id=run_id, **fields)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
        added = set(structlog.contextvars.get_contextvars()) - before
        structlog.contextvars.unbind_contextvars(*added)
