"""structlog setup for the wrapper and for relayed cloudflared output.

Two logger families are configured:

* ``cloudflared_wrapper.*`` - the supervisor's own lifecycle messages
  (resolve, launch, URL discovered, exit), governed by ``level``.
* ``cloudflared_wrapper.output`` - every decoded chunk cloudflared writes,
  governed by ``output_level``. cloudflared is chatty, so this is quiet
  unless explicitly turned up.
"""

import logging
import sys

import structlog
from structlog.typing import Processor

OUTPUT_LOGGER_NAME = "cloudflared_wrapper.output"


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
    output_level: str = "WARNING",
) -> None:
    """Configure structured logging for the wrapper.

    Args:
        level: Level for the wrapper's own messages
        json_format: If True, render JSON lines instead of console output
        log_file: Optional file receiving the same records
        output_level: Level for relayed cloudflared output (DEBUG shows it)
    """
    log_level = getattr(logging, level.upper())
    relay_level = getattr(logging, output_level.upper())

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    # filtering happens per logger so the output logger can be more verbose
    # than the root; handlers pass everything they receive
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    logging.getLogger(OUTPUT_LOGGER_NAME).setLevel(relay_level)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def get_output_logger(stream: str) -> structlog.stdlib.BoundLogger:
    """Logger for chunks relayed from one cloudflared stream.

    Args:
        stream: ``"stdout"`` or ``"stderr"``, bound to every record
    """
    return get_logger(OUTPUT_LOGGER_NAME).bind(stream=stream)
