from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.api.deps import get_cart_store, get_db
from storefront.core.auth import get_current_user_id
from storefront.db.models import Order, Product
from storefront.store.cart_store import CartStore

router = APIRouter()

def _order_read(obj: Order) -> dict:
    return {
        "id": obj.id,
        "status": obj.status,
        "payment_status": obj.payment_status,
        "payment_method": obj.payment_method,
        "payment_reference": obj.payment_reference,
        "delivery_method": obj.delivery_method,
        "address": obj.address,
        "subtotal_cents": obj.subtotal_cents,
        "discount_cents": obj.discount_cents,
        "voucher_code": obj.voucher_code,
        "total_cents": obj.total_cents,
        "currency": obj.currency,
        "created_at": obj.created_at.isoformat() if obj.created_at else None,
        "items": [
            {"product_id": it.product_id, "title": it.title_snapshot, "qty": it.qty,
             "unit_price_cents": it.unit_price_cents, "line_total_cents": it.qty * it.unit_price_cents}
            for it in obj.items
        ],
    }

def _own_order(db: Session, order_id: int, user_id: int) -> Order:
    obj = db.get(Order, order_id)
    if not obj or obj.user_id != user_id:
        raise HTTPException(status_code=404, detail="Order not found")
    return obj

@router.get("/v1/orders")
def list_orders(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    return [_order_read(o) for o in db.execute(stmt).scalars()]

@router.get("/v1/orders/{order_id}")
def get_order(order_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _order_read(_own_order(db, order_id, user_id))

@router.post("/v1/orders/{order_id}/reorder")
def reorder(order_id: int, user_id: int = Depends(get_current_user_id),
            db: Session = Depends(get_db), store: CartStore = Depends(get_cart_store)):
    obj = _own_order(db, order_id, user_id)
    added, skipped = [], []
    for it in obj.items:
        product = db.get(Product, it.product_id)
        in_stock = product.inventory.in_stock if product and product.inventory else 0
        existing = store.get_item(user_id, it.product_id)
        qty = min(it.qty + (int(existing["qty"]) if existing else 0), in_stock)
        if not product or not product.active or qty <= 0:
            skipped.append(it.product_id)
            continue
        # current catalog price, not the price paid last time
        store.put_item(user_id, {
            "product_id": product.id,
            "qty": qty,
            "unit_price_cents": product.price_cents,
            "title": product.title,
        })
        added.append(product.id)
    return {"added": added, "skipped": skipped, "items": store.get_cart(user_id)}
