"""
Logging configuration for ledger_rpc
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

NOISY_LOGGERS = ("aiohttp", "web3", "urllib3", "asyncio")


def setup_logging(log_level: int = logging.INFO, log_file: Optional[str] = None,
                  logger_name: str = "ledger_rpc") -> logging.Logger:
    """
    Configure the package logger with a console handler and, optionally,
    a rotating file handler.

    Args:
        log_level: Logging level to use
        log_file: Path of a log file; directories are created as needed

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)

    # Remove any existing handlers
    logger.handlers = []
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
