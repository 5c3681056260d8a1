"""
Failure taxonomy and provider error classification.

Every provider failure is mapped into a closed set of kinds so the
orchestrator can decide between falling back and aborting.
"""

from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """Closed set of failure kinds surfaced to callers."""
    RATE_LIMITED = "rate_limited"
    REQUEST_TOO_LARGE = "request_too_large"
    TIMEOUT = "timeout"
    MODEL_UNAVAILABLE = "model_unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_INPUT = "invalid_input"
    CONTEXT_TOO_LONG = "context_too_long"
    UNKNOWN = "unknown"


# Kinds that advance to the next fallback candidate
FALLBACK_KINDS = frozenset({
    FailureKind.MODEL_UNAVAILABLE,
    FailureKind.QUOTA_EXCEEDED,
    FailureKind.TIMEOUT,
    FailureKind.UNKNOWN,
})


class ConfigurationError(ValueError):
    """Raised when catalog or fallback data is inconsistent.

    Only raised while loading; a running orchestrator never produces it.
    """


class ProviderError(Exception):
    """Vendor-neutral error reported by a model provider."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class InvocationCancelled(Exception):
    """Raised when the caller cancels before a reply was obtained."""

    def __init__(self, message: str, attempted_models: Optional[list] = None):
        super().__init__(message)
        self.attempted_models = list(attempted_models or [])


def is_fallback_kind(kind: FailureKind) -> bool:
    """True when a different model may succeed where this one failed."""
    return kind in FALLBACK_KINDS


def classify_error(exc: BaseException) -> FailureKind:
    """Map a provider exception onto a FailureKind.

    Reads ``status_code``/``status``, ``code`` and the message the way
    vendor SDK errors expose them, so no vendor module is imported here.

    Args:
        exc: Exception raised by the provider call

    Returns:
        The matching FailureKind, ``UNKNOWN`` when nothing matches
    """
    exc_type = type(exc).__name__.lower()
    message = str(exc).lower()
    code = getattr(exc, "code", None)
    code = code.lower() if isinstance(code, str) else None
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    if not isinstance(status, int):
        status = None

    if isinstance(exc, TimeoutError) or "timeout" in exc_type or "timed out" in message:
        return FailureKind.TIMEOUT

    if code == "insufficient_quota" or "quota" in message:
        return FailureKind.QUOTA_EXCEEDED

    if code == "context_length_exceeded" or "maximum context length" in message:
        return FailureKind.CONTEXT_TOO_LONG

    # Provider-side throttling: another model has its own allowance
    if code == "rate_limit_exceeded" or status == 429:
        return FailureKind.QUOTA_EXCEEDED

    if code == "model_not_found" or status == 404:
        return FailureKind.MODEL_UNAVAILABLE
    if "model" in message and ("not found" in message or "does not exist" in message):
        return FailureKind.MODEL_UNAVAILABLE
    if status is not None and status >= 500:
        return FailureKind.MODEL_UNAVAILABLE
    if isinstance(exc, ConnectionError) or "connection" in exc_type or code == "connection_error":
        return FailureKind.MODEL_UNAVAILABLE

    if status in (400, 422) or code == "invalid_request_error":
        return FailureKind.INVALID_INPUT

    return FailureKind.UNKNOWN
