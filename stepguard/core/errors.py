# stepguard/core/errors.py
"""
Error taxonomy for the device trust engine.

Services raise these; the HTTP layer turns them into JSON responses via the
handler registered in ``stepguard.main``. Code failures share one public
detail so callers cannot tell a wrong code from an expired or replayed one.
"""

from typing import Any, Dict, Optional

INVALID_OR_EXPIRED_CODE = "invalid_or_expired_code"


class DeviceTrustError(Exception):
    status_code: int = 500
    detail: str = "Internal error"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        super().__init__(message or detail or self.detail)
        if detail is not None:
            self.detail = detail

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.detail}


class NotFoundError(DeviceTrustError):
    status_code = 404
    detail = "Not found"


class SessionNotFoundError(NotFoundError):
    detail = "Device session not found"


class InvalidCodeError(NotFoundError):
    status_code = 400
    detail = INVALID_OR_EXPIRED_CODE


class UnauthorizedError(DeviceTrustError):
    status_code = 401
    detail = "Unauthorized"


class ConflictError(DeviceTrustError):
    status_code = 409
    detail = "Conflict"


class CodeAlreadyConsumedError(ConflictError):
    status_code = 400
    detail = INVALID_OR_EXPIRED_CODE


class UpstreamFailure(DeviceTrustError):
    status_code = 502
    detail = "Upstream service failure"


class MisconfigurationError(DeviceTrustError):
    status_code = 500
    detail = "No verification method available"


class RateLimitedError(DeviceTrustError):
    status_code = 429
    detail = "Too many requests. Please try again later."


class MethodNotEnabledError(DeviceTrustError):
    status_code = 403
    detail = "Verification method is not enabled"


class VerificationRequiredError(DeviceTrustError):
    """Raised when a gated action is attempted outside the grace period."""

    status_code = 403
    detail = "verification_required"

    def __init__(self, requirement):
        super().__init__("Step-up verification required")
        self.requirement = requirement

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": self.detail,
            **self.requirement.model_dump(mode="json"),
        }
