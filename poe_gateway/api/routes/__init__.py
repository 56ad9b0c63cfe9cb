"""API routes for the gateway."""

from .chat import chat_completions
from .models import list_models, list_upstream_models

__all__ = [
    "chat_completions",
    "list_models",
    "list_upstream_models",
]
