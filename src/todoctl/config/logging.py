"""structlog setup for the todoctl CLI host.

Everything logs to stderr so stdout carries only command results. The
router and the integrity scheduler log from worker threads, so records
emitted off the main thread carry a ``thread`` field.

Levels for ``todoctl.*``: ``-v`` gives DEBUG, ``-q`` gives ERROR, and
WARNING otherwise. SQLAlchemy is held at WARNING whatever the flags.
"""

from __future__ import annotations

import logging
import sys
import threading

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

LIBRARY_LOGGERS = ("sqlalchemy",)


def _add_thread(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    thread = threading.current_thread()
    if thread is not threading.main_thread():
        event_dict.setdefault("thread", thread.name)
    return event_dict


def _level(*, verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    return logging.WARNING


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_thread,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(*, verbose: bool = False, quiet: bool = False, log_json: bool = False) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Safe to call repeatedly; each call replaces the root handler.
    """
    renderer: Processor
    if log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("todoctl").setLevel(_level(verbose=verbose, quiet=quiet))
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
