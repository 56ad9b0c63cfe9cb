"""Poe Gateway - OpenAI-compatible chat completions on top of Poe bots.

This module provides:
- An OpenAI chat-completions endpoint (streaming and non-streaming)
- Translation of messages, images, files, tools and reasoning controls
  into Poe bot queries
- A content-addressed attachment cache and a global upstream pacing gate
- Model listing with name mapping from models.yaml

Example:
    >>> from poe_gateway.main import create_app
    >>> import uvicorn
    >>> uvicorn.run(create_app(), host="0.0.0.0", port=8080)
"""

from .main import create_app, run
from .services import GatewayServices
from .settings import Settings, load_settings
from .logging import setup_logging

__all__ = [
    "create_app",
    "GatewayServices",
    "load_settings",
    "run",
    "Settings",
    "setup_logging",
]
