import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("EVENTS_ENABLED", "false")

from datetime import timedelta
from decimal import Decimal

import fakeredis
import httpx
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api import deps
from storefront.checkout.flow import CheckoutFlow
from storefront.checkout.schemas import PaymentGateway
from storefront.core.config import AirwallexConfig, NetsConfig, PayPalConfig, Settings, StripeConfig, get_settings
from storefront.db.models import Inventory, Product, Voucher, now_utc
from storefront.db.session import Base
from storefront.gateways import TOKENS, build_adapter
from storefront.gateways.stripe_checkout import StripeGateway
from storefront.main import app
from storefront.store.cart_store import CartStore
from storefront.store.checkout_store import CheckoutSessionStore
from storefront.store.pending_payments import PendingPaymentStore


class FakeStripeSessions:
    """Stands in for ``stripe.checkout.Session``: create/retrieve against an in-memory dict."""

    def __init__(self):
        self.sessions = {}
        self.created = []

    def create(self, api_key=None, **params):
        sid = f"cs_test_{len(self.sessions) + 1}"
        session = {"id": sid, "url": f"https://checkout.stripe.test/{sid}", "payment_status": "unpaid",
                   "payment_intent": None, **params}
        self.sessions[sid] = session
        self.created.append(params)
        return session

    def retrieve(self, sid, api_key=None):
        return self.sessions[sid]

    def mark_paid(self, sid, payment_intent="pi_test_1"):
        self.sessions[sid].update(payment_status="paid", payment_intent=payment_intent)


def _unexpected(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected provider call {request.method} {request.url}")


@pytest.fixture(autouse=True)
def fresh_tokens():
    TOKENS.clear()
    yield
    TOKENS.clear()


@pytest.fixture
def settings():
    return Settings(
        PUBLIC_BASE_URL="http://api.test",
        FRONTEND_BASE_URL="http://shop.test",
        STORE_CURRENCY="SGD",
        CHECKOUT_LOCK_WAIT_SECONDS=0.2,
        RECONCILE_MAX_ATTEMPTS=2,
        paypal=PayPalConfig(client_id="pp-client", client_secret="pp-secret", mode="sandbox", base_url=""),
        stripe=StripeConfig(secret_key="sk_test_123"),
        airwallex=AirwallexConfig(api_key="awx-key", client_id="awx-client", env="demo", base_url=""),
        nets=NetsConfig(api_key="nets-key", project_id="nets-project",
                        base_url="https://sandbox.nets.openapipaas.com", txn_id_override=""),
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cart_store(redis):
    return CartStore(redis)


@pytest.fixture
def checkout_store(redis, settings):
    return CheckoutSessionStore(redis, ttl_seconds=settings.CHECKOUT_TTL_SECONDS,
                                lock_timeout=5, lock_wait=settings.CHECKOUT_LOCK_WAIT_SECONDS)


@pytest.fixture
def pending(db):
    return PendingPaymentStore(db)


@pytest.fixture
def events():
    return []


@pytest.fixture
def publish(events):
    def _publish(key, value):
        events.append(value)
    return _publish


@pytest.fixture
def gateway_http():
    """Per-test provider handlers, ``{PaymentGateway: handler(request) -> httpx.Response}``."""
    return {}


@pytest.fixture
def stripe_sessions():
    return FakeStripeSessions()


@pytest.fixture
def adapter_factory(settings, pending, gateway_http, stripe_sessions):
    def factory(gateway):
        http = httpx.Client(transport=httpx.MockTransport(gateway_http.get(gateway, _unexpected)))
        if gateway is PaymentGateway.STRIPE:
            return StripeGateway(settings.stripe, pending, settings.STORE_CURRENCY, http=http, sessions=stripe_sessions)
        return build_adapter(gateway, settings, pending, http=http)
    return factory


@pytest.fixture
def flow(db, settings, cart_store, checkout_store, pending, adapter_factory, publish):
    return CheckoutFlow(db, settings, cart_store, checkout_store, pending, adapter_factory, publish)


@pytest.fixture
def client(db, redis, settings, adapter_factory, publish):
    def _db():
        yield db

    app.dependency_overrides[deps.get_db] = _db
    app.dependency_overrides[deps.redis_client] = lambda: redis
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[deps.get_adapter_factory] = lambda: adapter_factory
    app.dependency_overrides[deps.get_publisher] = lambda: publish
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_token(settings: Settings, user_id: int) -> str:
    return jwt.encode({"sub": str(user_id), "type": "access"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_headers(settings):
    return {"Authorization": f"Bearer {make_token(settings, 7)}"}


def make_product(db, title="Widget", price_cents=1000, in_stock=10, active=True) -> Product:
    p = Product(title=title, price_cents=price_cents, category="Test", active=active)
    p.inventory = Inventory(in_stock=in_stock)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def make_voucher(db, code="SAVE10", discount_type="PERCENT", amount="10", min_spend_cents=2000, days=30) -> Voucher:
    v = Voucher(code=code, discount_type=discount_type, amount=Decimal(amount), min_spend_cents=min_spend_cents,
                publish_at=now_utc() - timedelta(days=1), expire_at=now_utc() + timedelta(days=days))
    db.add(v)
    db.commit()
    return v


def stock_of(db, product_id: int) -> int:
    db.expire_all()
    return db.get(Inventory, product_id).in_stock
