"""
Logging setup (loguru)
"""

import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Replace loguru's default sink

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file sink in addition to stderr
    """
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, level=level, format=LOG_FORMAT, encoding='utf-8')
