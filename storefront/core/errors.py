"""Error taxonomy for checkout and payment reconciliation."""

from typing import Optional


class StorefrontError(Exception):
    pass


class ValidationError(StorefrontError):
    """Checkout input is incomplete; ``field`` names the first unmet precondition."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class VoucherRejected(StorefrontError):
    INVALID_OR_EXPIRED = "INVALID_OR_EXPIRED"
    MIN_SPEND_NOT_MET = "MIN_SPEND_NOT_MET"

    def __init__(self, reason: str, min_spend_cents: Optional[int] = None):
        self.reason = reason
        self.min_spend_cents = min_spend_cents
        super().__init__(self.message)

    @property
    def message(self) -> str:
        if self.reason == self.MIN_SPEND_NOT_MET:
            return f"Minimum spend ${self.min_spend_cents / 100:.2f} required"
        return "Invalid or expired voucher"


class GatewayUnavailable(StorefrontError):
    def __init__(self, gateway: str):
        super().__init__(f"{gateway} is not configured")
        self.gateway = gateway


class GatewayRequestError(StorefrontError):
    """The provider rejected a request. ``code``/``message`` are provider-side and for logs only."""

    def __init__(self, gateway: str, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{gateway} request failed: {code} {message}")
        self.gateway = gateway
        self.code = code
        self.message = message
        self.status_code = status_code


class AmountFormatError(StorefrontError):
    def __init__(self, value):
        super().__init__(f"Amount {value!r} cannot be represented with two decimals")
        self.value = value


class PaymentNotConfirmed(StorefrontError):
    def __init__(self, provider_payment_id: str, status: str):
        super().__init__(f"Payment {provider_payment_id} not confirmed (status={status})")
        self.provider_payment_id = provider_payment_id
        self.status = status


class InsufficientStock(StorefrontError):
    def __init__(self, product_id: int, requested: int):
        super().__init__(f"Insufficient stock for product_id {product_id} (requested {requested})")
        self.product_id = product_id
        self.requested = requested


class ReconcileError(StorefrontError):
    """Payment was captured but the order could not be persisted. Needs manual follow-up."""

    def __init__(self, provider_payment_id: str, reason: str):
        super().__init__(f"Reconciliation failed for payment {provider_payment_id}: {reason}")
        self.provider_payment_id = provider_payment_id
        self.reason = reason


class StagingMissing(StorefrontError):
    def __init__(self, message: str = "No payment amount"):
        super().__init__(message)
        self.message = message


class CheckoutBusy(StorefrontError):
    def __init__(self, user_id: int):
        super().__init__(f"Another checkout request for user {user_id} is in progress")
        self.user_id = user_id
