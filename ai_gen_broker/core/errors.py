"""
Error taxonomy for the generation broker.

Every error surfaced to callers derives from BrokerError and carries a
machine-readable code plus a details dictionary that the HTTP boundary
can render without parsing messages.
"""

from typing import Any, Dict, Optional


class BrokerError(Exception):
    """Base class for all broker errors."""
    code = "BROKER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class QuotaError(BrokerError):
    """Admission rejected by the daily token quota."""
    code = "QUOTA_ERROR"


class QuotaExceeded(QuotaError):
    """User has already consumed the whole daily budget."""
    code = "TOKEN_LIMIT_EXCEEDED"


class WouldExceedQuota(QuotaError):
    """Estimated cost of this request is larger than the remaining budget."""
    code = "REQUEST_WOULD_EXCEED_LIMIT"


class AccessDenied(BrokerError):
    """Project context requested by a non-owner on a private project."""
    code = "ACCESS_DENIED"


class NotFound(BrokerError):
    """Referenced user, project or interaction is absent or not visible."""
    code = "NOT_FOUND"


class InvalidRequest(BrokerError):
    """Request failed validation before any work was done."""
    code = "INVALID_REQUEST"


class ProviderAttemptFailed(BrokerError):
    """A single strategy attempt failed. Never surfaced to callers."""
    code = "PROVIDER_ATTEMPT_FAILED"

    def __init__(self, message: str, model_id: Optional[str] = None):
        super().__init__(message, {"model": model_id} if model_id else None)
        self.model_id = model_id


class MalformedResponse(ProviderAttemptFailed):
    """Provider answered with a shape the decoder does not recognize."""
    code = "MALFORMED_RESPONSE"


class GenerationFailed(BrokerError):
    """Every strategy, including the mock floor, raised."""
    code = "GENERATION_FAILED"

    def __init__(self, message: str = "AI generation failed", interaction_id: Optional[str] = None):
        super().__init__(message, {"interaction_id": interaction_id} if interaction_id else None)
        self.interaction_id = interaction_id


class InteractionStateError(ValueError):
    """Terminal mutation attempted on an interaction that is not pending."""
