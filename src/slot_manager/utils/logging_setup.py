"""Console and file logging for the slot CLI."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "slot_manager"


class SlotLogFormatter(logging.Formatter):
    """Compact formatter that prefixes the slot being worked on."""

    def __init__(self, use_colors: bool = True, show_time: bool = False):
        super().__init__()
        self.use_colors = use_colors
        self.show_time = show_time

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with slot context."""
        slot_context = ""
        if getattr(record, "slot", None):
            slot_context = f"[{record.slot}] "

        if self.use_colors:
            level_colors = {
                "DEBUG": "\033[36m",      # Cyan
                "WARNING": "\033[33m",    # Yellow
                "ERROR": "\033[31m",      # Red
                "CRITICAL": "\033[35m",   # Magenta
            }
            reset = "\033[0m"
            level_color = level_colors.get(record.levelname, "")
        else:
            level_color = ""
            reset = ""

        # INFO lines are progress output; only flag the other levels
        level = "" if record.levelno == logging.INFO else f"{record.levelname.lower()}: "
        prefix = ""
        if self.show_time:
            prefix = datetime.fromtimestamp(record.created).strftime("%H:%M:%S") + " "

        message = f"{prefix}{level_color}{level}{reset}{slot_context}{record.getMessage()}"
        if record.exc_info and not self.use_colors:
            message += "\n" + self.formatException(record.exc_info)
        return message


class SlotContextLogger(logging.LoggerAdapter):
    """Logger adapter that tags records with the current slot name."""

    def __init__(self, logger: logging.Logger, slot: Optional[str] = None):
        super().__init__(logger, {})
        self.slot = slot

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        if self.slot:
            extra["slot"] = self.slot
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    use_colors: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        verbose: Emit DEBUG records to the console
        log_file: Append plain-text records to this file as well
        use_colors: Force ANSI colors on/off (default: only on a TTY)

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    if use_colors is None:
        use_colors = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(SlotLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
        except OSError as e:
            logger.warning(f"Cannot open log file {log_file}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(SlotLogFormatter(use_colors=False, show_time=True))
            logger.addHandler(file_handler)

    return logger


def slot_logger(name: str, slot: Optional[str]) -> SlotContextLogger:
    """Return a logger adapter for ``name`` that tags records with ``slot``."""
    return SlotContextLogger(logging.getLogger(name), slot)
