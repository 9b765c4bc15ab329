import logging
import sys
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

# Logs directory, overridable for containers and tests
LOGS_DIR = os.getenv("LOG_DIR", os.path.join(os.path.dirname(__file__), "logs"))


class CustomFormatter(logging.Formatter):
    """Custom formatter with colors for console output"""

    grey = "\x1b[38;20m"
    blue = "\x1b[34;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + format_str + reset,
        logging.INFO: blue + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


def setup_logging(level: Optional[str] = None, log_to_file: bool = True) -> logging.Logger:
    """Attach console and rotating file handlers to the root logger.

    Every module logs through ``logging.getLogger(__name__)``, so configuring
    the root once at startup covers the whole backend.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Prevent duplicate handlers if function is called multiple times
    if any(getattr(h, "_dashboard_handler", False) for h in root.handlers):
        return root

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomFormatter())
    console_handler._dashboard_handler = True
    root.addHandler(console_handler)

    if log_to_file:
        # 5MB max size per file, keep last 5 backups
        os.makedirs(LOGS_DIR, exist_ok=True)
        log_file = os.path.join(LOGS_DIR, "dashboard.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        file_handler._dashboard_handler = True
        root.addHandler(file_handler)

    return root


logger = logging.getLogger("dashboard")
