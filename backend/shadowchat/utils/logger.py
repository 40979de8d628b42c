# shadowchat/utils/logger.py

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from shadowchat.core import config


def setup_logger(
    level: str | None = None,
    file_path: str | None = None,
    max_size_mb: int | None = None,
    backup_count: int | None = None,
) -> None:
    """Configure the root logger with console and rotating file handlers"""
    level = level or config.LOG_LEVEL
    file_path = file_path or config.LOG_FILE
    max_size_mb = max_size_mb or config.LOG_MAX_SIZE_MB
    backup_count = backup_count or config.LOG_BACKUP_COUNT

    log_path = Path(file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        file_path,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Reconfiguring (tests, reloads) must not stack handlers
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name"""
    return logging.getLogger(name)
