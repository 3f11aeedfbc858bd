
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, BigInteger, Numeric, JSON
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from storefront.db.session import Base

def now_utc() -> datetime: return datetime.now(timezone.utc).replace(tzinfo=None)

class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"

class PendingStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

TERMINAL_STATUSES = (PendingStatus.COMPLETED.value, PendingStatus.FAILED.value)

class DiscountType(str, Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"

class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(240), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(String(120), default="")
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    inventory = relationship("Inventory", back_populates="product", uselist=False, cascade="all, delete-orphan")

class Inventory(Base):
    __tablename__ = "inventory"
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    in_stock: Mapped[int] = mapped_column(Integer, default=0)
    product = relationship("Product", back_populates="inventory")

class Voucher(Base):
    __tablename__ = "vouchers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    discount_type: Mapped[str] = mapped_column(String(16), default=DiscountType.PERCENT.value)
    # percent points for PERCENT, currency units for FIXED
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min_spend_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    publish_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    expire_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    delivery_method: Mapped[str] = mapped_column(String(32))
    address: Mapped[str] = mapped_column(String(512), default="")
    payment_method: Mapped[str] = mapped_column(String(32))
    payment_status: Mapped[str] = mapped_column(String(16), default=PaymentStatus.UNPAID.value)
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=True)
    provider_payment_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=True)
    subtotal_cents: Mapped[int] = mapped_column(BigInteger)
    discount_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    voucher_code: Mapped[str] = mapped_column(String(64), nullable=True)
    total_cents: Mapped[int] = mapped_column(BigInteger)
    currency: Mapped[str] = mapped_column(String(3), default="SGD")
    status: Mapped[str] = mapped_column(String(32), default="CREATED")
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc, onupdate=now_utc)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    product_id: Mapped[int] = mapped_column(Integer)
    qty: Mapped[int] = mapped_column(Integer)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger)
    title_snapshot: Mapped[str] = mapped_column(String(255))

    order = relationship("Order", back_populates="items")

class PendingPayment(Base):
    __tablename__ = "pending_payments"
    provider_payment_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    gateway: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), default=PendingStatus.PENDING.value)
    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=True)
    # set once by the checkout that started the payment; status writes never touch these
    user_id: Mapped[int] = mapped_column(Integer, nullable=True, index=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    last_updated: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
