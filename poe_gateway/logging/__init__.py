"""Logging module for the gateway."""

from .setup import LOGGER_NAME, mask_secret, setup_logging

__all__ = ["LOGGER_NAME", "mask_secret", "setup_logging"]
