import logging
import sys
from pathlib import Path
from typing import Optional

from fatpack.config import effective_settings as config


class SubprocessLogFilter(logging.Filter):
    """
    This filter identifies logs coming from the subprocess logger
    and keeps them out of handlers that would format them a second time.
    """
    def filter(self, record):
        # The 'proc.' prefix is used by the output relay in process_utils.py
        return not record.name.startswith('proc.')


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw subprocess logs."""

    def format(self, record):
        # If the log is from a child process, just return the raw line.
        if record.name.startswith('proc.'):
            return record.getMessage()

        original_format = self._style._fmt
        self._style._fmt = config.LOG_FORMAT
        formatted_message = super().format(record)
        self._style._fmt = original_format
        return formatted_message


def setup_logging(console_level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Configures the root logger for fatpack.
    This sets up handlers for the console and optionally a log file,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param log_file: Optional file receiving all DEBUG and above records.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- File Handler (conditional) ---
    log_file = log_file or (Path(config.LOG_FILE_PATH) if config.LOG_FILE_PATH else None)
    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
            # Child output already lands on the console; keep the file to our own records.
            file_handler.addFilter(SubprocessLogFilter())
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.error(f"Failed to initialize file logging handler at '{log_file}': {e}")
