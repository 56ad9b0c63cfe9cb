"""Logging configuration for the gateway."""

import logging
import sys

LOGGER_NAME = "poe-gateway"


def setup_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Set up logging with proper handlers and formatters."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    # Propagate to root so pytest's caplog and uvicorn handlers still see records
    logger.propagate = True

    return logger


def mask_secret(value: str | None) -> str:
    """Mask a credential for log output, keeping only the last four characters."""
    if not value:
        return "<none>"
    if len(value) <= 8:
        return "***"
    return f"***{value[-4:]}"
