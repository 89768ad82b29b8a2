# Overview: Exception taxonomy for checkout operations.

"""
Checkout errors.

Every failure carries a stable machine code and optional details so the
client can present a specific remedy. Routes map the classes to HTTP
status codes; nothing here is retried by the engine.
"""


class CheckoutError(Exception):
    """Base class for checkout operation errors."""
    status_code = 400

    def __init__(self, message: str, code: str = "CHECKOUT_ERROR", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class CheckoutValidationError(CheckoutError):
    """Malformed input (bad quantity, negative amount, rate out of range)."""
    status_code = 400

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details: dict | None = None):
        super().__init__(message, code, details)


class CheckoutNotFoundError(CheckoutError):
    """Session, item, discount, payment or catalog entity not found."""
    status_code = 404

    def __init__(self, message: str, code: str = "NOT_FOUND", details: dict | None = None):
        super().__init__(message, code, details)


class CheckoutRuleError(CheckoutError):
    """Business rule violation (expired membership, overpayment, ...)."""
    status_code = 422

    def __init__(self, message: str, code: str = "BUSINESS_RULE", details: dict | None = None):
        super().__init__(message, code, details)


class CheckoutStateError(CheckoutError):
    """Operation not allowed in the session's current lifecycle state."""
    status_code = 409

    def __init__(self, message: str, code: str = "INVALID_STATE", details: dict | None = None):
        super().__init__(message, code, details)
