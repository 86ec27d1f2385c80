"""
Logging setup shared by every league module.

All loggers write through one set of handlers: the console, a league log
rotated at midnight and an error-only log with source locations. Handlers
are built on first use so LOG_DIR can still be changed before then.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Optional

from league.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
ERROR_FORMAT = '%(asctime)s - %(name)s:%(lineno)d - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_handlers: Optional[List[logging.Handler]] = None


def get_log_level() -> int:
    if Config.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName(Config.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers() -> List[logging.Handler]:
    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = get_log_level()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    league_log = logging.handlers.TimedRotatingFileHandler(
        log_dir / 'league.log',
        when='midnight',
        backupCount=Config.LOG_RETENTION_DAYS,
        encoding='utf-8'
    )
    league_log.setLevel(level)
    league_log.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    # Errors only, kept longer
    error_log = logging.handlers.TimedRotatingFileHandler(
        log_dir / 'league-errors.log',
        when='midnight',
        backupCount=Config.LOG_RETENTION_DAYS * 4,
        encoding='utf-8'
    )
    error_log.setLevel(logging.ERROR)
    error_log.setFormatter(logging.Formatter(ERROR_FORMAT, datefmt=DATE_FORMAT))

    return [console, league_log, error_log]


def setup_logger(name: str) -> logging.Logger:
    """Return the named logger attached to the shared league handlers"""
    global _handlers

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if _handlers is None:
        _handlers = _build_handlers()

    logger.setLevel(get_log_level())
    logger.propagate = False
    for handler in _handlers:
        logger.addHandler(handler)
    return logger
