"""
Logging configuration for production use.

Provides structured logging with file and console output.
Integrates with config for environment-specific log levels.
"""

import logging
import logging.handlers

from .config import config
from .exceptions import ConfigurationError


def setup_logging(logger_name: str = "caseflags") -> logging.Logger:
    """
    Configure and return a logger instance.

    Args:
        logger_name: Name of the logger (typically the package name)

    Returns:
        Configured logger instance

    Raises:
        ConfigurationError: If the configured log level is unknown
    """
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {config.log_level}")

    logger = logging.getLogger(logger_name)

    # Don't add handlers if logger already configured
    if logger.handlers:
        return logger

    logger.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = config.logs_dir / f"{logger_name}.log"
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger
