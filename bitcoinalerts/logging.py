"""Logging setup shared by the block processor, dispatchers and CLI."""

import logging
import logging.handlers
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Any

if TYPE_CHECKING:
    from .config import Config

LOG_FILE = "bitcoin-alerts.log"
ERROR_LOG_FILE = "bitcoin-alerts-error.log"

# Records carry the thread name: processor and one thread per dispatcher
FILE_FORMAT = "%(asctime)s [%(levelname)-8s] [%(threadName)s] [%(name)s] %(message)s"
CONSOLE_FORMAT = "[%(levelname)-8s] [%(threadName)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Transport libraries used by the RPC client and publishers
NOISY_LOGGERS = ("urllib3", "websocket", "BitcoinRPC")


def _level(name: str) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


def _size_rotated(path: Path, rotation: Dict[str, Any]) -> logging.Handler:
    return logging.handlers.RotatingFileHandler(
        path,
        maxBytes=rotation.get("max_bytes", 10485760),
        backupCount=rotation.get("backup_count", 30),
        encoding="utf-8"
    )


def _main_file_handler(log_dir: Path, rotation: Dict[str, Any]) -> logging.Handler:
    """Daily rotation into ``archive/`` by default, size rotation otherwise."""
    if rotation.get("when") != "midnight":
        return _size_rotated(log_dir / LOG_FILE, rotation)

    archive_dir = log_dir / "archive"
    archive_dir.mkdir(exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / LOG_FILE,
        when="midnight",
        interval=1,
        backupCount=rotation.get("backup_count", 30),
        encoding="utf-8"
    )
    handler.namer = lambda name: str(archive_dir / Path(name).name)
    return handler


def setup_logging(config: "Config") -> None:
    """
    Route all records to a main log, an error-only log and the console.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        config: Configuration instance with logging settings
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    file_level = _level(config.log_level)
    console_level = _level(config.console_level)
    file_formatter = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)

    main_handler = _main_file_handler(log_dir, config.log_rotation)
    main_handler.setLevel(file_level)

    error_handler = _size_rotated(log_dir / ERROR_LOG_FILE, config.log_rotation)
    error_handler.setLevel(logging.ERROR)

    for handler in (main_handler, error_handler):
        handler.setFormatter(file_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    root_logger = logging.getLogger()
    for old in list(root_logger.handlers):
        root_logger.removeHandler(old)
        if isinstance(old, logging.FileHandler):
            old.close()
    root_logger.setLevel(min(file_level, console_level))
    for handler in (main_handler, error_handler, console_handler):
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(file_level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
