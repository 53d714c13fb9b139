import logging
from pathlib import Path
from typing import Optional

from config import Config

LOGGING_LEVEL = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

# Empty LOG_FILE disables the shared file handler
LOG_FILE_PATH: Optional[Path] = Path(Config.LOG_FILE) if Config.LOG_FILE else None


class LoggingFormatter(logging.Formatter):
    """Console formatter with a colour per level."""

    black = "\x1b[30m"
    red = "\x1b[31m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    gray = "\x1b[38m"
    blue = "\x1b[34m"
    cyan = "\x1b[36m"
    reset = "\x1b[0m"
    bold = "\x1b[1m"

    COLORS = {
        logging.DEBUG: gray + bold,
        logging.INFO: blue + bold,
        logging.WARNING: yellow + bold,
        logging.ERROR: red,
        logging.CRITICAL: red + bold,
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelno, self.reset)
        fmt = (
            f"{self.black}{self.bold}{{asctime}}{self.reset} "
            f"{level_color}{{levelname:<8}}{self.reset} "
            f"{self.green}{self.bold}{{name}}{self.reset}  "
            f"{self.cyan}{{message}}{self.reset}"
        )
        return logging.Formatter(fmt, "%Y-%m-%d %H:%M:%S", style="{").format(record)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for file logging (no ANSI codes)."""
    def __init__(self):
        super().__init__(
            fmt="{asctime} {levelname:<8} {name}  {message}",
            datefmt="%Y-%m-%d %H:%M:%S",
            style="{"
        )


def set_logger(logger: logging.Logger) -> logging.Logger:
    logger.setLevel(LOGGING_LEVEL)
    logger.propagate = False

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(LoggingFormatter())
        logger.addHandler(console_handler)

        if LOG_FILE_PATH is not None:
            LOG_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(LOG_FILE_PATH, encoding='utf-8')
            file_handler.setFormatter(PlainFormatter())
            logger.addHandler(file_handler)

    return logger


def get_last_log_lines(count: int = 500) -> str:
    """Read the last N lines from the log file."""
    if LOG_FILE_PATH is None or not LOG_FILE_PATH.exists():
        return "No log file found."

    try:
        with open(LOG_FILE_PATH, 'r', encoding='utf-8') as f:
            lines = f.readlines()
            return ''.join(lines[-count:])
    except OSError as e:
        return f"Error reading logs: {e}"
