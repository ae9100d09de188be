import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from platformdirs import user_config_path

ROOT_LOGGER_NAME = "murmur"
LOG_FILE_NAME = "app.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers whose records also go to the app log.
LIBRARY_LOGGERS = ("faster_whisper",)

_logger_instance: Optional[logging.Logger] = None


def get_log_dir() -> Path:
    log_dir = user_config_path(ROOT_LOGGER_NAME, appauthor=False) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _build_handlers(level: int) -> List[logging.Handler]:
    from ..core.settings.config import LOG_FILE_BACKUPS, LOG_FILE_MAX_BYTES, LOG_TO_CONSOLE

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: List[logging.Handler] = [
        RotatingFileHandler(
            get_log_dir() / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    ]
    if LOG_TO_CONSOLE:
        handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def _configure_root() -> logging.Logger:
    from ..core.settings.config import LIBRARY_LOG_LEVEL, get_log_level

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    if root_logger.handlers:
        return root_logger

    level = get_log_level()
    root_logger.setLevel(level)
    root_logger.propagate = False

    handlers = _build_handlers(level)
    for handler in handlers:
        root_logger.addHandler(handler)

    for name in LIBRARY_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.setLevel(LIBRARY_LOG_LEVEL)
        for handler in handlers:
            library_logger.addHandler(handler)

    return root_logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Return a logger under the ``murmur`` hierarchy.

    The first call installs the rotating file handler (and the console
    handler when enabled) on the ``murmur`` root logger. Module loggers are
    plain children and inherit those handlers.
    """
    global _logger_instance

    # Running from a checkout imports modules as src.murmur.*
    if name == "src." + ROOT_LOGGER_NAME or name.startswith("src." + ROOT_LOGGER_NAME + "."):
        name = name[len("src."):]

    if _logger_instance is None:
        _logger_instance = _configure_root()

    if name == ROOT_LOGGER_NAME:
        return _logger_instance
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """Close every handler so the log file is released."""
    global _logger_instance

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(root_logger.handlers)
    for handler in handlers:
        root_logger.removeHandler(handler)
        for name in LIBRARY_LOGGERS:
            logging.getLogger(name).removeHandler(handler)
        handler.close()

    _logger_instance = None
