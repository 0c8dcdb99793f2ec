"""
Error taxonomy for the gift deck.

Input errors are raised synchronously and mapped to HTTP 400 by the API.
Retrieval and feedback-delivery errors are logged by the component that
catches them and never reach the end user. Consistency conflicts are not
exceptions at all: the recorder reports them in its ack.
"""

from typing import Any, Dict, Optional


class GiftDeckError(Exception):
    """Base class for all gift deck errors."""

    kind: str = "gift_deck_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


# -----------------------------------------------------------------------------
# (a) Input errors
# -----------------------------------------------------------------------------

class InputError(GiftDeckError):
    """Malformed constraints or feedback payload."""

    kind = "invalid_input"


class InvalidConstraintsError(InputError):
    kind = "invalid_constraints"


class InvalidActionError(InputError):
    kind = "invalid_action"


class MissingSessionError(InputError):
    kind = "missing_session"


class InvalidPayloadError(InputError):
    kind = "invalid_payload"


class InvalidPageError(InputError):
    kind = "invalid_page"


# -----------------------------------------------------------------------------
# (b) Retrieval errors
# -----------------------------------------------------------------------------

class RetrievalError(GiftDeckError):
    """The candidate retriever failed. Callers treat this as an empty pool."""

    kind = "retrieval_failed"


# -----------------------------------------------------------------------------
# (c) Feedback-delivery errors
# -----------------------------------------------------------------------------

class FeedbackDeliveryError(GiftDeckError):
    """A swipe or save record could not be delivered or persisted."""

    kind = "feedback_delivery_failed"

    def __init__(self, message: str, status_code: Optional[int] = None, **details: Any) -> None:
        super().__init__(message, **details)
        self.status_code = status_code


# -----------------------------------------------------------------------------
# Client-side page load failures (surfaced as a retry prompt)
# -----------------------------------------------------------------------------

class DeckLoadError(GiftDeckError):
    """A recommend / recommend-more call failed."""

    kind = "deck_load_failed"

    def __init__(self, message: str, status_code: Optional[int] = None, **details: Any) -> None:
        super().__init__(message, **details)
        self.status_code = status_code
