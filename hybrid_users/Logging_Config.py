# Logging_Config.py
# Description: Configuration for logging
#
# Library modules log through standard `logging`; config and the composition root log through
# loguru. Both end up in the same root-logger handlers: a console StreamHandler and a rotating
# log file next to the users database.
#
# Imports
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from hybrid_users.config import get_log_file_path, get_logging_settings
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "asyncio")


def sink_to_standard_logging(message):
    """Loguru sink that re-emits every record through the standard logging system."""
    record = message.record
    level_mapping = {
        "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
        "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    std_level = level_mapping.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    return getattr(logging, str(name).upper(), default)


def configure_logging(level: Optional[str] = None,
                      log_file: Optional[Union[str, Path]] = None,
                      file_level: Optional[str] = None,
                      max_bytes: Optional[int] = None,
                      backup_count: Optional[int] = None,
                      enable_file: bool = True) -> logging.Logger:
    """
    Sets up the root logger and routes loguru into it. Arguments left as None are read from
    the [general] and [logging] config sections. Safe to call more than once.
    """
    settings = get_logging_settings()
    console_level = _level(level or settings["log_level"], logging.INFO)
    file_log_level = _level(file_level or settings["file_log_level"], logging.INFO)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    # --- Loguru -> standard logging ---
    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, format="{message}", level="TRACE")

    # --- Root logger ---
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        try:
            handler.close()
        except OSError:
            pass

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    handler_levels = [console_level]
    if enable_file:
        log_file_path = Path(log_file).expanduser() if log_file else get_log_file_path()
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=int(max_bytes if max_bytes is not None else settings["log_max_bytes"]),
                backupCount=int(backup_count if backup_count is not None else settings["log_backup_count"]),
                encoding='utf-8',
            )
            file_handler.setLevel(file_log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            handler_levels.append(file_log_level)
        except OSError as e:
            logging.warning(f"Could not set up file logging at '{log_file_path}': {e}")

    # Root passes through whatever the most verbose handler wants
    root_logger.setLevel(min(handler_levels))
    logging.info(f"Logging configured. Root level: {logging.getLevelName(root_logger.level)}")
    return root_logger

#
# End of Logging_Config.py
########################################################################################################################
