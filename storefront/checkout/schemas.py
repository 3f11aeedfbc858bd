from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PaymentGateway(str, Enum):
    PAYPAL = "PAYPAL"
    STRIPE = "STRIPE"
    AIRWALLEX = "AIRWALLEX"
    NETS_QR = "NETS_QR"

    @property
    def slug(self) -> str:
        return {"NETS_QR": "nets"}.get(self.value, self.value.lower())

    @classmethod
    def from_slug(cls, slug: str) -> "PaymentGateway":
        for gw in cls:
            if gw.slug == slug.lower():
                return gw
        raise ValueError(f"Unknown gateway {slug!r}")


# Form values accepted for the payment method field
GATEWAY_ALIASES = {
    "PAYPAL": PaymentGateway.PAYPAL,
    "NETS": PaymentGateway.NETS_QR,
    "NETS_QR": PaymentGateway.NETS_QR,
    "STRIPE": PaymentGateway.STRIPE,
    "AIRWALLEX": PaymentGateway.AIRWALLEX,
}


class DeliveryMethod(str, Enum):
    PICKUP = "pickup"
    STANDARD = "standard"
    DELIVERY = "delivery"

    @property
    def requires_address(self) -> bool:
        return self is DeliveryMethod.DELIVERY


class CheckoutState(str, Enum):
    STAGED = "STAGED"
    GATEWAY_PENDING = "GATEWAY_PENDING"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    ORDER_CREATED = "ORDER_CREATED"
    STOCK_ADJUSTED = "STOCK_ADJUSTED"
    PAID_RECORDED = "PAID_RECORDED"
    SESSION_CLEARED = "SESSION_CLEARED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    RECONCILE_ERROR = "RECONCILE_ERROR"


class CartLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    title: str
    unit_price_cents: int = Field(ge=0)
    qty: int = Field(gt=0)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.qty


def subtotal_cents(lines) -> int:
    return sum(line.unit_price_cents * line.qty for line in lines)


class AppliedVoucher(BaseModel):
    code: str
    discount_type: str
    discount_cents: int = Field(ge=0)


class CheckoutStaging(BaseModel):
    """Pre-payment snapshot of one checkout attempt. Consumed once by reconciliation."""

    model_config = ConfigDict(frozen=True)

    cart: Tuple[CartLine, ...]
    delivery_method: DeliveryMethod
    address: str = ""
    voucher_code: Optional[str] = None
    discount_cents: int = Field(default=0, ge=0)
    subtotal_cents: int = Field(ge=0)
    total_cents: int = Field(ge=0)
    gateway: PaymentGateway
    staged_at: datetime

    @model_validator(mode="after")
    def _totals_consistent(self):
        if self.subtotal_cents != subtotal_cents(self.cart):
            raise ValueError("subtotal does not match cart lines")
        if self.total_cents != max(0, self.subtotal_cents - self.discount_cents):
            raise ValueError("total must equal max(0, subtotal - discount)")
        return self


class CheckoutForm(BaseModel):
    delivery_method: Optional[str] = None
    address: Optional[str] = ""
    payment_method: Optional[str] = None
    payment_method_fallback: Optional[str] = None


class InitiateResult(BaseModel):
    provider_payment_id: str
    redirect_url: Optional[str] = None
    embedded: Optional[dict] = None
    # extra values kept in the checkout session next to the payment id
    session_artifacts: dict = Field(default_factory=dict)
