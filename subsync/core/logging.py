import logging
import os
from typing import Optional, Union

from colorlog import ColoredFormatter

LOG_FORMAT = (
    "%(log_color)s%(levelname)-8s%(reset)s | "
    "%(blue)s%(asctime)s%(reset)s | "
    "%(green)s%(name)s:%(lineno)d%(reset)s | "
    "%(white)s%(message)s"
)

# Chatty libraries that drown out subscription transitions at DEBUG
QUIET_LOGGERS = ("urllib3", "apscheduler.executors", "sqlalchemy.engine")


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        resolved = getattr(logging, level.upper(), None)
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logger(level: Optional[Union[int, str]] = None) -> logging.Logger:
    # Root logger, so every module's getLogger(__name__) inherits it
    logger = logging.getLogger()
    resolved = _resolve_level(level)
    logger.setLevel(resolved)

    # Avoid duplicate handlers on repeated calls
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = ColoredFormatter(
        LOG_FORMAT,
        datefmt="%d-%m-%Y %H:%M:%S",
        log_colors={
            "DEBUG": "cyan",
            "INFO": "white",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red,bg_white",
        },
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(resolved)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    return logger
