# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration.

Usage:
    # In entry points (CLI)
    from rootbox.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Extracted %d files", count)
"""

import logging


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SessionOutputFilter(logging.Filter):
    """Drop per-session output records unless explicitly enabled.

    Session pumps log every chunk of process output at DEBUG. That is
    useful when chasing a broken sandbox but drowns everything else, so
    records flagged with ``session_output`` are suppressed by default.
    """

    def __init__(self, enabled: bool = False) -> None:
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False for session output records when disabled."""
        if getattr(record, "session_output", False):
            return self.enabled
        return True


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    trace_session_output: bool = False,
) -> None:
    """Configure logging for the application.

    Sets up the root logger with a standard format. Existing handlers are
    removed to avoid duplicate output when called more than once.

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
        trace_session_output: Whether raw session output is logged.
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))
    handler.addFilter(SessionOutputFilter(enabled=trace_session_output))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module.

    Convenience wrapper around logging.getLogger().

    Args:
        name: The logger name, typically __name__.

    Returns:
        A configured logger instance.
    """
    return logging.getLogger(name)
