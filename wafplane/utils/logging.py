"""structlog setup: one processor chain for wafplane events and library records.

wafplane code logs through ``get_logger``; SQLAlchemy, uvicorn and redis log
through the stdlib. Both end up in the same handlers and are rendered by
structlog's ``ProcessorFormatter``, so every line carries the same
timestamp, level, logger name and bound request/tenant ids.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import structlog

LOG_FILENAME = "wafplane.log"

_PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_PRE_CHAIN,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    debug: bool = False,
    log_dir: str = "logs",
    log_max_bytes: int = 10_000_000,
    log_backup_count: int = 5,
) -> None:
    """Route all logging through structlog renderers.

    stdout gets the console renderer in debug and JSON otherwise; the
    rotating ``<log_dir>/wafplane.log`` is always JSON.
    """
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            *_PRE_CHAIN,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        _formatter(structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer())
    )
    handlers: list[logging.Handler] = [console]

    try:
        os.makedirs(log_dir, exist_ok=True)
        rotating = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILENAME),
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        rotating = None
        print(f"wafplane: file logging disabled ({e})", file=sys.stderr)
    if rotating is not None:
        rotating.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        handlers.append(rotating)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)
    root.setLevel(level)

    # SQL statements only in debug
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Named structured logger; ``name`` becomes the stdlib logger name."""
    return structlog.get_logger(name)
