"""Structured logging configuration for conveyor.

Configures structlog and stdlib logging together so that both
``structlog.get_logger(__name__)`` and ``logging.getLogger(__name__)``
emit through the same processor chain, as console or JSON lines.

Log lines go to stderr. Stdout is reserved for command output (run
summaries, the routing-key listing) so it can be read or piped on its
own. A long migration can also keep a JSON-lines copy of every event in
a log file, whatever the console format.

Every line carries the thread name, and events emitted while an item is
being processed carry that item's identifiers (bound by the scheduler
through structlog contextvars).
"""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

# Loggers that emit per-request connection chatter at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "httpcore.connection",
    "httpcore.http11",
)


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop ProcessorFormatter's bookkeeping keys before rendering."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _parse_level(level: str) -> int:
    try:
        return _LEVELS[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level {level!r}, expected one of {list(_LEVELS)}") from None


def _formatter(shared_processors: list[Any], *, json_output: bool, colors: bool = False) -> ProcessorFormatter:
    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=colors),
        ]
    return ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors)


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    log_file: Path | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: Emit JSON lines on stderr instead of console output.
        level: Root log level (DEBUG, INFO, WARNING, ERROR).
        log_file: Also append every event to this file as JSON lines.

    Raises:
        ValueError: If level is not one of the supported names.
    """
    log_level = _parse_level(level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder({structlog.processors.CallsiteParameter.THREAD_NAME}),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure logging; cached loggers would keep the old chain
        cache_logger_on_first_use=False,
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(shared_processors, json_output=json_output, colors=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [console]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(_formatter(shared_processors, json_output=True))
        handlers.append(file_handler)

    root = logging.getLogger()
    for previous in root.handlers:
        previous.close()
    root.handlers = handlers
    root.setLevel(log_level)

    # Never make the noisy loggers less restrictive than root
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
