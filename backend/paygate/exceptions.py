"""
PayGate Exception Hierarchy

Every error raised by the gateway carries a stable error code, an HTTP status
and renders to the `{"ok": false, "error": ...}` response shape used by all
endpoints.
"""
from typing import Optional, Dict, Any, List


class PaymentGatewayError(Exception):
    """
    Base exception for all gateway errors.

    Subclasses set status_code; the FastAPI handler in main.py renders
    to_dict() with that status.
    """

    status_code: int = 500

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        body: Dict[str, Any] = {
            "ok": False,
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PaymentGatewayError):
    """
    Request input failed validation.

    Carries every violated rule, not just the first one.
    """

    status_code = 400

    def __init__(self, errors: List[str], details: Optional[Dict[str, Any]] = None):
        self.errors = list(errors)
        super().__init__("validation_error", "; ".join(self.errors), details)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class AuthenticationError(PaymentGatewayError):
    """
    Provider credential exchange failed.

    Examples:
    - OAuth response has no access_token
    - OAuth endpoint unreachable or returned an HTTP error
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("provider_authentication_failed", message, details)


class PushFailedError(PaymentGatewayError):
    """
    Provider rejected or failed to accept a push request.

    Examples:
    - ResponseCode other than "0"
    - Transport error while posting the STK push
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("provider_push_failed", message, details)


class NotFoundError(PaymentGatewayError):
    """Lookup miss for a payment id."""

    status_code = 404

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__("not_found", "Not found", {"id": payment_id})

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message}


class InvalidTransitionError(PaymentGatewayError):
    """Attempted status transition out of a terminal state."""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_transition", message, details)


class DuplicatePaymentError(PaymentGatewayError):
    """A payment with the same id already exists in the store."""

    status_code = 409

    def __init__(self, payment_id: str):
        super().__init__("duplicate_payment", f"Payment {payment_id} already exists", {"id": payment_id})


class StartupConfigError(PaymentGatewayError):
    """
    Required configuration is missing.

    Raised during application startup; not recoverable at runtime.
    """

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            "startup_config_missing",
            f"Missing required environment variables: {', '.join(self.missing)}",
            {"missing": self.missing},
        )
