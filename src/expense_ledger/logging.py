import logging
import sys
from typing import Literal

import structlog


def _shared_processors() -> list[structlog.typing.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _handler(
    handler: logging.Handler,
    renderer: structlog.typing.Processor,
    shared_processors: list[structlog.typing.Processor],
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def configure_logging(
    level: str = "INFO",
    log_format: Literal["json", "console"] = "console",
    log_file: str | None = None,
) -> None:
    """Send structlog and stdlib records to stderr, and to ``log_file`` when given.

    stdout is left to command output. The file always receives JSON lines, one per
    event, so ledger changes (``balance_applied``, ``ledger_rolled_back``, ...)
    can be read back after the command has exited.
    """
    shared_processors = _shared_processors()
    # Chinese names stay readable in JSON
    json_renderer = structlog.processors.JSONRenderer(ensure_ascii=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stderr_renderer: structlog.typing.Processor = (
        json_renderer
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    handlers = [_handler(logging.StreamHandler(sys.stderr), stderr_renderer, shared_processors)]
    if log_file:
        handlers.append(
            _handler(logging.FileHandler(log_file, encoding="utf-8"), json_renderer, shared_processors)
        )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for logger_name in ["sqlalchemy", "aiosqlite", "asyncio"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
