from typing import Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.checkout.schemas import (
    GATEWAY_ALIASES, AppliedVoucher, CartLine, CheckoutStaging, DeliveryMethod, PaymentGateway, subtotal_cents,
)
from storefront.core.errors import ValidationError
from storefront.core.logging_config import get_logger
from storefront.db.models import Product, now_utc

log = get_logger(__name__)


def build_cart_snapshot(db: Session, items: Sequence[dict]) -> Tuple[CartLine, ...]:
    """Cart lines priced from the catalog as it is right now; missing or inactive products are dropped."""
    ids = [int(it["product_id"]) for it in items]
    if not ids:
        return ()
    products = {p.id: p for p in db.execute(select(Product).where(Product.id.in_(ids))).scalars()}
    lines = []
    for it in items:
        product = products.get(int(it["product_id"]))
        qty = int(it.get("qty") or 0)
        if product is None or not product.active or qty <= 0:
            log.warning(f"Dropping cart entry for product {it['product_id']} (unavailable or empty)")
            continue
        lines.append(CartLine(product_id=product.id, title=product.title,
                              unit_price_cents=product.price_cents, qty=qty))
    return tuple(lines)


def parse_delivery_method(value: Optional[str]) -> DeliveryMethod:
    if not value or not value.strip():
        raise ValidationError("delivery_method", "Please select a delivery method.")
    try:
        return DeliveryMethod(value.strip().lower())
    except ValueError:
        raise ValidationError("delivery_method", "Please select a delivery method.")


def parse_gateway(value: Optional[str]) -> PaymentGateway:
    gateway = GATEWAY_ALIASES.get((value or "").strip().upper())
    if gateway is None:
        raise ValidationError("payment_method", "Please select a payment method.")
    return gateway


def stage(cart: Sequence[CartLine], delivery_method: Optional[str], address: Optional[str],
          voucher: Optional[AppliedVoucher], gateway: Optional[str]) -> CheckoutStaging:
    """
    Validate the checkout form and freeze the cart into a CheckoutStaging.

    Checks run in form order (delivery method, address, payment method) and
    the first failure is raised; an empty cart is checked last.
    """
    method = parse_delivery_method(delivery_method)
    address = (address or "").strip()
    if method.requires_address and not address:
        raise ValidationError("address", "Please provide a delivery address.")
    chosen = parse_gateway(gateway)
    if not cart:
        raise ValidationError("cart", "Your cart is empty.")

    subtotal = subtotal_cents(cart)
    discount = voucher.discount_cents if voucher else 0
    return CheckoutStaging(
        cart=tuple(cart),
        delivery_method=method,
        address=address,
        voucher_code=voucher.code if voucher else None,
        discount_cents=min(discount, subtotal),
        subtotal_cents=subtotal,
        total_cents=max(0, subtotal - discount),
        gateway=chosen,
        staged_at=now_utc(),
    )
