"""Identity-provider handlers."""
from .base import DismissiblePrompt, IdpHandler, InterruptIndicator
from .registry import HANDLER_REGISTRY, detect_handler, get_handler, select_handler

__all__ = [
    "DismissiblePrompt",
    "HANDLER_REGISTRY",
    "IdpHandler",
    "InterruptIndicator",
    "detect_handler",
    "get_handler",
    "select_handler",
]
