"""Failure taxonomy for the payment core.

Every error carries the HTTP status it maps to at the API boundary, where it
is rendered as ``{"error": message}``.
"""


class PaymentCoreError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PaymentCoreError):
    """Missing or malformed request fields."""

    status_code = 400
    default_message = "Missing required fields"


class AuthError(PaymentCoreError):
    """Identity token missing, invalid or expired."""

    status_code = 401
    default_message = "Authentication failed"


class SignatureInvalid(PaymentCoreError):
    """Payment signature did not match; possible forgery."""

    status_code = 400
    default_message = "Invalid payment signature"


class GatewayError(PaymentCoreError):
    """Payment provider unreachable or rejected the request."""

    status_code = 500
    default_message = "Failed to create payment order"


class StorageError(PaymentCoreError):
    """Document store write failed; the subscription was not updated."""

    status_code = 500
    default_message = "Failed to update subscription"


class RateLimited(PaymentCoreError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message)
