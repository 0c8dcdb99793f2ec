"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- Request tracing middleware
- The error taxonomy shared by server and client
"""

from core.logging import configure_logging, get_logger
from core.errors import (
    GiftDeckError,
    InputError,
    InvalidConstraintsError,
    InvalidActionError,
    MissingSessionError,
    InvalidPayloadError,
    InvalidPageError,
    RetrievalError,
    FeedbackDeliveryError,
    DeckLoadError,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "GiftDeckError",
    "InputError",
    "InvalidConstraintsError",
    "InvalidActionError",
    "MissingSessionError",
    "InvalidPayloadError",
    "InvalidPageError",
    "RetrievalError",
    "FeedbackDeliveryError",
    "DeckLoadError",
]
