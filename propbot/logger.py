"""
Logging setup shared by the whole project.

setup_logging() is called once by the bot entry point; every module just
asks for ``get_logger(__name__)``.
"""
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional
import time
from contextlib import contextmanager

from .config import OUTPUTS_DIR

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Chatty per-request loggers of the HTTP clients behind openai and telegram
NOISY_LOGGERS = ("httpx", "httpcore")


def _has_file_handler(root: logging.Logger, path: str) -> bool:
    return any(
        isinstance(h, logging.handlers.RotatingFileHandler) and h.baseFilename == path
        for h in root.handlers
    )


def _has_console_handler(root: logging.Logger) -> bool:
    # File handlers subclass StreamHandler, so compare the exact type
    return any(type(h) is logging.StreamHandler for h in root.handlers)


def setup_logging(level: str = "INFO",
                  log_file: Optional[Path] = None,
                  enable_console: bool = True) -> None:
    """
    Attach a rotating file handler and (optionally) a console handler to the
    root logger. Repeated calls only update the level.
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    log_path = Path(log_file) if log_file is not None else OUTPUTS_DIR / "propbot.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if not _has_file_handler(root, os.path.abspath(log_path)):
        handler = logging.handlers.RotatingFileHandler(
            str(log_path), maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS, encoding="utf-8",
        )
        handler.setLevel(numeric_level)
        handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)

    if enable_console and not _has_console_handler(root):
        console = logging.StreamHandler()
        console.setLevel(numeric_level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(console)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_timing(logger: logging.Logger, message: str):
    """Log ``message`` on entry and again with the elapsed seconds on exit."""
    started = time.perf_counter()
    logger.info(f"{message} - started")
    try:
        yield
    finally:
        logger.info(f"{message} - finished in {time.perf_counter() - started:.2f}s")
