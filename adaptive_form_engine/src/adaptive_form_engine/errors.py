"""
Error Types

Error taxonomy for the behavioral-session core. None of these are fatal:
tracking degrades gracefully instead of breaking the host page.
"""

from typing import Any, Dict, Optional


class AdaptError(Exception):
    """Base error carrying a machine-readable code and optional context."""

    def __init__(self, message: str, code: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class EventValidationError(AdaptError):
    """Malformed behavior event. Rejects that single event, never the batch."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_EVENT", context)


class PersistenceError(AdaptError):
    """Store unavailable, timed out, or returned corrupt data."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PERSISTENCE_ERROR", context)


class UpstreamInferenceError(AdaptError):
    """ML inference call failed, timed out, or produced no adaptations."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "ML_ERROR", context)


def is_adapt_error(error: BaseException) -> bool:
    return isinstance(error, AdaptError)
