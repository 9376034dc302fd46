import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Optional

from colorama import Fore, Style, init

init(autoreset=True)

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

LEVEL_COLORS = {
    "INFO": Fore.BLUE,
    "SUCCESS": Fore.GREEN,
    "WARNING": Fore.YELLOW,
    "ERROR": Fore.RED,
    "DEBUG": Fore.CYAN,
    "NOTIFY": Fore.MAGENTA + Style.BRIGHT,
}


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    name: str = "scanner",
    level: int = logging.INFO,
    log_file: Optional[str] = "data/logs/scanner.log",
    console: bool = True,
    structured_file: Optional[str] = None,
) -> logging.Logger:
    """Install handlers on ``name`` (``""`` for the root logger).

    Only entry points call this; library modules just use
    ``logging.getLogger(__name__)``. Any handlers already present are replaced.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()

    if log_file:
        logger.addHandler(_file_handler(log_file, level, logging.Formatter(FILE_FORMAT)))
    if structured_file:
        logger.addHandler(_file_handler(structured_file, level, StructuredFormatter()))
    if console:
        stream = logging.StreamHandler()
        stream.setLevel(level)
        stream.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(stream)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_scan_event(
    logger: logging.Logger,
    event_type: str,
    message: str,
    level: int = logging.INFO,
    **event_data: Any,
) -> None:
    """Log ``message`` with ``event_type``/``event_data`` attached for the JSON log."""
    logger.log(level, message, extra={"event_type": event_type, "event_data": event_data})


def colored_print(level: str, message: str, color: Optional[str] = None):
    """Operator notification on stdout, colored by level"""
    print(f"{color or LEVEL_COLORS.get(level, Fore.WHITE)}{message}")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for JSON-lines scan logs"""

    def format(self, record):
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event_type": getattr(record, "event_type", "general"),
            "event_data": getattr(record, "event_data", {}),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)
