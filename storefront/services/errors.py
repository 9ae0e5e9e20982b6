"""Error taxonomy shared by the order pipeline.

Every error raised by the services carries a stable ``kind`` and a
human-readable message. ``main.py`` maps them onto HTTP responses using
``status_code``; nothing below the route layer knows about HTTP.
"""


class StorefrontError(Exception):
    kind = "storefront_error"
    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class ValidationError(StorefrontError):
    kind = "validation_error"
    status_code = 400


class InvalidTransition(ValidationError):
    kind = "invalid_transition"
    status_code = 409


class NotFoundError(StorefrontError):
    kind = "not_found"
    status_code = 404


class Forbidden(StorefrontError):
    kind = "forbidden"
    status_code = 403


class InsufficientStock(StorefrontError):
    kind = "insufficient_stock"
    status_code = 409


class InsufficientWalletBalance(StorefrontError):
    kind = "insufficient_wallet_balance"
    status_code = 400


class PaymentVerificationFailed(StorefrontError):
    kind = "payment_verification_failed"
    status_code = 400


class OrderNotCancellable(StorefrontError):
    kind = "order_not_cancellable"
    status_code = 409


class ExternalServiceError(StorefrontError):
    """A payment, carrier, notification or data-store call failed or timed out."""

    kind = "external_service_error"
    status_code = 502
