"""Voucher pricing: discount for a voucher code against the cart subtotal."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.checkout.schemas import AppliedVoucher, CartLine, subtotal_cents
from storefront.core.errors import VoucherRejected
from storefront.core.logging_config import get_logger
from storefront.db.models import DiscountType, Voucher, now_utc

log = get_logger(__name__)


def find_active_voucher(db: Session, code: str) -> Optional[Voucher]:
    if not code or not code.strip():
        return None
    stmt = select(Voucher).where(Voucher.code == code.strip(), Voucher.expire_at >= now_utc())
    return db.execute(stmt).scalars().first()


def discount_for(voucher: Voucher, subtotal: int) -> int:
    """Discount in cents, capped at the subtotal and rounded half-up to the cent."""
    amount = Decimal(voucher.amount or 0)
    if (voucher.discount_type or "").upper() == DiscountType.PERCENT.value:
        discount = Decimal(subtotal) * amount / Decimal(100)
    else:
        discount = amount * 100
    discount = min(max(discount, Decimal(0)), Decimal(subtotal))
    return int(discount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def apply(db: Session, cart: Sequence[CartLine], code: str) -> AppliedVoucher:
    voucher = find_active_voucher(db, code)
    if voucher is None:
        raise VoucherRejected(VoucherRejected.INVALID_OR_EXPIRED)

    subtotal = subtotal_cents(cart)
    min_spend = voucher.min_spend_cents or 0
    if subtotal < min_spend:
        raise VoucherRejected(VoucherRejected.MIN_SPEND_NOT_MET, min_spend)

    discount = discount_for(voucher, subtotal)
    log.info(f"Voucher {voucher.code} applied: subtotal={subtotal} discount={discount}")
    return AppliedVoucher(code=voucher.code, discount_type=voucher.discount_type.upper(), discount_cents=discount)
