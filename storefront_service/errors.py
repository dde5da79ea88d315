"""
errors.py — Error taxonomy of the Storefront Service

Every failure that reaches a client is one of the exceptions below. The API
layer renders them as ``{"error": <message>}`` with the attached status code;
adapters translate library exceptions (stripe, httpx) into UpstreamFailure
after logging the raw upstream detail.
"""


class StorefrontError(Exception):
    """Base class for all domain errors surfaced to API clients."""
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None, **extra):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"error": self.message, **self.extra}


class InvalidInput(StorefrontError):
    status_code = 400
    message = "Invalid input"


class UnknownItem(InvalidInput):
    message = "Unknown catalog item"


class MissingCustomer(InvalidInput):
    message = "User authentication or customer info required"


class NotFound(StorefrontError):
    status_code = 404
    message = "Not found"


class AuthFailure(StorefrontError):
    status_code = 401
    message = "Unauthorized"


class InvalidSignature(AuthFailure):
    message = "Invalid signature"


class StateConflict(StorefrontError):
    status_code = 400
    message = "State conflict"


class IntentMismatch(StateConflict):
    message = "Payment intent mismatch"


class PaymentNotCompleted(StateConflict):
    message = "Payment not completed"


class OrderNotCancellable(StateConflict):
    message = "Order cannot be cancelled"


class UpstreamFailure(StorefrontError):
    status_code = 500
    message = "Upstream service failure"


class MisconfiguredSecret(StorefrontError):
    status_code = 500
    message = "Webhook secret is not configured"
