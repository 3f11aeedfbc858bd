from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import List
from sqlalchemy.orm import Session

from storefront.api.deps import get_cart_store, get_db
from storefront.core.auth import get_current_user_id
from storefront.db.models import Product
from storefront.store.cart_store import CartStore

router = APIRouter()

class CartItemAdd(BaseModel):
    product_id: int
    qty: int = Field(ge=1)

class CartItemUpdate(BaseModel):
    qty: int = Field(ge=0)

class CartItemRead(BaseModel):
    product_id: int
    qty: int
    unit_price_cents: int
    title: str

class CartRead(BaseModel):
    items: List[CartItemRead] = []
    subtotal_cents: int = 0

def _read(store: CartStore, user_id: int) -> CartRead:
    items = store.get_cart(user_id)
    return CartRead(items=items, subtotal_cents=sum(int(i["qty"]) * int(i["unit_price_cents"]) for i in items))

def _available_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product or not product.active:
        raise HTTPException(status_code=404, detail="Product not found")
    return product

def _check_stock(product: Product, qty: int):
    in_stock = product.inventory.in_stock if product.inventory else 0
    if qty > in_stock:
        raise HTTPException(status_code=400, detail=f"Only {in_stock} left in stock")

@router.get("/v1/cart", response_model=CartRead)
def get_my_cart(user_id: int = Depends(get_current_user_id), store: CartStore = Depends(get_cart_store)):
    return _read(store, user_id)

@router.post("/v1/cart/items", response_model=CartRead, status_code=201)
def add_item(payload: CartItemAdd, user_id: int = Depends(get_current_user_id),
             store: CartStore = Depends(get_cart_store), db: Session = Depends(get_db)):
    product = _available_product(db, payload.product_id)
    existing = store.get_item(user_id, product.id)
    qty = payload.qty + (int(existing["qty"]) if existing else 0)
    _check_stock(product, qty)
    # price shown in the cart; checkout re-reads the catalog when staging
    store.put_item(user_id, {
        "product_id": product.id,
        "qty": qty,
        "unit_price_cents": product.price_cents,
        "title": product.title,
    })
    return _read(store, user_id)

@router.patch("/v1/cart/items/{product_id}", response_model=CartRead)
def update_item(product_id: int, payload: CartItemUpdate, user_id: int = Depends(get_current_user_id),
                store: CartStore = Depends(get_cart_store), db: Session = Depends(get_db)):
    if payload.qty == 0:
        store.delete_item(user_id, product_id)
        return _read(store, user_id)
    existing = store.get_item(user_id, product_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Item not in cart")
    _check_stock(_available_product(db, product_id), payload.qty)
    existing["qty"] = payload.qty
    store.put_item(user_id, existing)
    return _read(store, user_id)

@router.delete("/v1/cart/items/{product_id}", response_model=CartRead)
def remove_item(product_id: int, user_id: int = Depends(get_current_user_id), store: CartStore = Depends(get_cart_store)):
    store.delete_item(user_id, product_id)
    return _read(store, user_id)

@router.post("/v1/cart/clear", response_model=CartRead)
def clear(user_id: int = Depends(get_current_user_id), store: CartStore = Depends(get_cart_store)):
    store.clear_cart(user_id)
    return _read(store, user_id)
