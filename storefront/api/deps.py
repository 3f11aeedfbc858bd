from fastapi import Depends
from redis import Redis
from sqlalchemy.orm import Session

from storefront.checkout.flow import AdapterFactory, CheckoutFlow
from storefront.checkout.reconcile import Publisher
from storefront.core.config import Settings, get_settings
from storefront.db.session import SessionLocal
from storefront.gateways import build_adapter
from storefront.kafka.producer import publish_event
from storefront.store.cart_store import CartStore, get_client
from storefront.store.checkout_store import CheckoutSessionStore
from storefront.store.pending_payments import PendingPaymentStore

_redis = None

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def redis_client() -> Redis:
    global _redis
    if _redis is None:
        _redis = get_client()
    return _redis

def get_cart_store(r: Redis = Depends(redis_client)) -> CartStore:
    return CartStore(r)

def get_checkout_store(r: Redis = Depends(redis_client), settings: Settings = Depends(get_settings)) -> CheckoutSessionStore:
    return CheckoutSessionStore(
        r,
        ttl_seconds=settings.CHECKOUT_TTL_SECONDS,
        lock_timeout=settings.CHECKOUT_LOCK_TIMEOUT_SECONDS,
        lock_wait=settings.CHECKOUT_LOCK_WAIT_SECONDS,
    )

def get_pending_store(db: Session = Depends(get_db)) -> PendingPaymentStore:
    return PendingPaymentStore(db)

def get_publisher() -> Publisher:
    return publish_event

def get_adapter_factory(
    settings: Settings = Depends(get_settings),
    pending: PendingPaymentStore = Depends(get_pending_store),
) -> AdapterFactory:
    return lambda gateway: build_adapter(gateway, settings, pending)

def get_flow(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cart_store: CartStore = Depends(get_cart_store),
    checkout_store: CheckoutSessionStore = Depends(get_checkout_store),
    pending: PendingPaymentStore = Depends(get_pending_store),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
    publish: Publisher = Depends(get_publisher),
) -> CheckoutFlow:
    return CheckoutFlow(db, settings, cart_store, checkout_store, pending, adapter_factory, publish)
