import pytest

from conftest import make_product
from storefront.checkout.schemas import AppliedVoucher, CartLine, CheckoutStaging, DeliveryMethod, PaymentGateway
from storefront.checkout.staging import build_cart_snapshot, stage
from storefront.core.errors import ValidationError
from storefront.db.models import now_utc

LINES = [CartLine(product_id=1, title="Milk", unit_price_cents=345, qty=2),
         CartLine(product_id=2, title="Bread", unit_price_cents=280, qty=1)]


def test_stage_computes_totals():
    voucher = AppliedVoucher(code="SAVE10", discount_type="PERCENT", discount_cents=97)
    staged = stage(LINES, "delivery", " 1 Main St ", voucher, "paypal")
    assert staged.subtotal_cents == 970
    assert staged.discount_cents == 97
    assert staged.total_cents == 873
    assert staged.address == "1 Main St"
    assert staged.gateway is PaymentGateway.PAYPAL
    assert staged.delivery_method is DeliveryMethod.DELIVERY
    assert staged.voucher_code == "SAVE10"


@pytest.mark.parametrize("raw,gateway", [
    ("NETS", PaymentGateway.NETS_QR), ("nets_qr", PaymentGateway.NETS_QR),
    ("Stripe", PaymentGateway.STRIPE), ("AIRWALLEX", PaymentGateway.AIRWALLEX),
])
def test_payment_method_aliases(raw, gateway):
    assert stage(LINES, "pickup", "", None, raw).gateway is gateway


def test_pickup_needs_no_address():
    assert stage(LINES, "pickup", "", None, "PAYPAL").address == ""


@pytest.mark.parametrize("delivery,address,gateway,cart,field", [
    (None, "", None, [], "delivery_method"),
    ("teleport", "x", "PAYPAL", LINES, "delivery_method"),
    ("delivery", "  ", None, [], "address"),
    ("delivery", "1 Main St", None, [], "payment_method"),
    ("pickup", "", "BITCOIN", LINES, "payment_method"),
    ("pickup", "", "PAYPAL", [], "cart"),
])
def test_first_unmet_precondition_is_reported(delivery, address, gateway, cart, field):
    with pytest.raises(ValidationError) as exc:
        stage(cart, delivery, address, None, gateway)
    assert exc.value.field == field


def test_staging_rejects_inconsistent_totals():
    with pytest.raises(ValueError):
        CheckoutStaging(cart=tuple(LINES), delivery_method="pickup", subtotal_cents=970,
                        discount_cents=0, total_cents=900, gateway="PAYPAL", staged_at=now_utc())


def test_snapshot_uses_current_catalog_price(db):
    p = make_product(db, "Coffee", price_cents=899)
    gone = make_product(db, "Discontinued", price_cents=100, active=False)
    items = [
        {"product_id": p.id, "qty": 2, "unit_price_cents": 500, "title": "stale title"},
        {"product_id": gone.id, "qty": 1, "unit_price_cents": 100, "title": "Discontinued"},
        {"product_id": 9999, "qty": 1, "unit_price_cents": 100, "title": "Missing"},
    ]
    lines = build_cart_snapshot(db, items)
    assert lines == (CartLine(product_id=p.id, title="Coffee", unit_price_cents=899, qty=2),)
