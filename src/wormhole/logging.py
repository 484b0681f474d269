"""Logging utilities for wormhole.

This module provides:
- Console and file logging setup with verbosity levels
- A TRACE level below DEBUG for raw remote command lines
- Performance timing for batches
- Host-scoped structured loggers
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
TRACE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

# More detailed than DEBUG: every remote command line
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,   # Default: warnings and errors only
    1: logging.INFO,      # -v: task progress
    2: logging.DEBUG,     # -vv: sessions and connections
    3: TRACE,             # -vvv: remote command lines
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a count of -v flags to a logging level."""
    return VERBOSITY_LEVELS.get(min(verbosity, 3), TRACE)


def get_level_from_name(level_name: str) -> int:
    """Convert a level name to a logging level.

    Args:
        level_name: One of trace, debug, info, warning, error, critical

    Returns:
        Logging level constant

    Raises:
        ValueError: If level name is invalid
    """
    level_map = {
        "trace": TRACE,
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    level_lower = level_name.lower()
    if level_lower not in level_map:
        valid = ", ".join(level_map.keys())
        raise ValueError(f"Invalid log level: {level_name}. Valid levels: {valid}")
    return level_map[level_lower]


def configure_logging(
    level: int = logging.WARNING,
    format_string: str | None = None,
    debug: bool = False,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Configure the root logger for a wormhole run.

    Args:
        level: Console logging level
        format_string: Custom format string (chosen from the level if None)
        debug: Use the debug format with timestamps and line numbers
        log_file: Optional path to also write logs to
        file_level: Separate level for the log file (defaults to level)

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.WARNING, log_file="/tmp/wormhole.log", file_level=TRACE)
    """
    if format_string is None:
        if level <= TRACE:
            format_string = TRACE_FORMAT
        elif debug or level <= logging.DEBUG:
            format_string = DEBUG_FORMAT
        else:
            format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, file_level or level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file) if isinstance(log_file, str) else log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_level or level)
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)

    # asyncssh logs every channel at INFO; keep it quiet unless tracing
    logging.getLogger("asyncssh").setLevel(logging.DEBUG if level <= TRACE else logging.WARNING)


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    threshold: float | None = None,
    **context: Any,
) -> Generator[None, None, None]:
    """Time an operation and log its duration.

    Args:
        logger: Logger instance to use
        operation: Description of the operation being timed
        level: Log level to use
        threshold: Only log if duration exceeds this threshold (seconds)
        **context: Additional context to include in the message

    Example:
        >>> with log_performance(logger, "Batch 1/3", hosts=2):
        ...     await run_batch()
        INFO: Batch 1/3 completed in 4.210s (hosts=2)
    """
    start_time = time.perf_counter()
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())

    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        if threshold is None or duration >= threshold:
            full_message = f"{operation} completed in {duration:.3f}s"
            if context:
                full_message += f" ({context_str})"
            logger.log(level, full_message)


class StructuredLogger:
    """Logger that appends fixed context to every message.

    Example:
        >>> logger = StructuredLogger("wormhole.playbook", host="gondor:22")
        >>> logger.info("Running task [1/2]: Install packages")
        INFO [wormhole.playbook] Running task [1/2]: Install packages (host=gondor:22)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self.logger = logging.getLogger(name)
        self.context: dict[str, Any] = context.copy()

    def add_context(self, **context: Any) -> None:
        """Add context included in all future messages."""
        self.context.update(context)

    def remove_context(self, *keys: str) -> None:
        """Remove context keys."""
        for key in keys:
            self.context.pop(key, None)

    def _format_message(self, message: str, **extra: Any) -> str:
        combined = {**self.context, **extra}
        if not combined:
            return message
        context_str = ", ".join(f"{k}={v}" for k, v in combined.items())
        return f"{message} ({context_str})"

    def trace(self, message: str, **extra: Any) -> None:
        self.logger.log(TRACE, self._format_message(message, **extra))

    def debug(self, message: str, **extra: Any) -> None:
        self.logger.debug(self._format_message(message, **extra))

    def info(self, message: str, **extra: Any) -> None:
        self.logger.info(self._format_message(message, **extra))

    def warning(self, message: str, **extra: Any) -> None:
        self.logger.warning(self._format_message(message, **extra))

    def error(self, message: str, **extra: Any) -> None:
        self.logger.error(self._format_message(message, **extra))


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Get a structured logger carrying ``context`` on every message."""
    return StructuredLogger(name, **context)
