"""
Logging Configuration

Three handlers on the "doccapture" logger:
- Console: coloured, INFO and up, human readable
- File: JSON lines via python-json-logger, rotated at midnight, 7 days kept
- Error file: plain text, ERROR and up
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "doccapture"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | [%(name)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s %(lineno)d %(funcName)s"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        # Work on a copy; the JSON handler sees the same record afterwards
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.msg = f"{color}{record.getMessage()}{self.RESET}"
        record.args = None
        return super().format(record)


def setup_logging(
    log_dir: Union[str, Path, None] = "logs",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    color: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        log_dir: Directory for the JSON and error logs; None disables file logging
        console_level: Minimum level printed to the console
        file_level: Minimum level written to the JSON log
        color: Force colours on/off; defaults to the console being a TTY
        stream: Console stream, stdout unless given

    Returns:
        The configured "doccapture" logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = stream or sys.stdout
    use_color = console.isatty() if color is None else color
    console_handler = logging.StreamHandler(console)
    console_handler.setLevel(console_level)
    formatter_cls = ColoredFormatter if use_color else logging.Formatter
    console_handler.setFormatter(formatter_cls(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # Rotates daily, keeps 7 days of logs
        file_handler = TimedRotatingFileHandler(
            log_path / "doccapture.log", when="midnight", interval=1, backupCount=7, encoding='utf-8'
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(jsonlogger.JsonFormatter(
            JSON_FORMAT,
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        ))
        logger.addHandler(file_handler)

        error_handler = logging.FileHandler(log_path / "doccapture.error.log", mode='a', encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(error_handler)

    return logger
