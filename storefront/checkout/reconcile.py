"""
Order reconciliation.

Turns a confirmed payment plus the staged checkout into exactly one order:

    PAYMENT_CONFIRMED -> ORDER_CREATED -> STOCK_ADJUSTED -> PAID_RECORDED -> SESSION_CLEARED

The three database transitions share one transaction. If any of them fails
the transaction is rolled back, so a failed stock decrement never leaves an
order row behind. The captured payment is not refunded here; a
RECONCILE_ERROR is logged at CRITICAL and published for manual follow-up.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.checkout.schemas import CheckoutStaging, CheckoutState
from storefront.core.errors import InsufficientStock, PaymentNotConfirmed, ReconcileError
from storefront.core.logging_config import get_logger
from storefront.db.models import Inventory, Order, OrderItem, PaymentStatus, PendingPayment, PendingStatus
from storefront.store.cart_store import CartStore
from storefront.store.checkout_store import CheckoutSessionStore

log = get_logger(__name__)

Publisher = Callable[[str, dict], None]

CONFIRMED_PATH = [CheckoutState.STAGED, CheckoutState.GATEWAY_PENDING, CheckoutState.PAYMENT_CONFIRMED]


@dataclass
class ReconcileResult:
    state: CheckoutState
    order_id: Optional[int]
    history: List[CheckoutState] = field(default_factory=list)
    replayed: bool = False


def _no_publish(key: str, value: dict):
    log.debug(f"event {value.get('type')} key={key} not published")


def check_payment_binding(user_id: int, staging: CheckoutStaging, payment: PendingPayment):
    """A payment only settles the checkout that started it: same user, same gateway, same staged total."""
    pid = payment.provider_payment_id
    if payment.user_id != user_id or payment.gateway != staging.gateway.value:
        log.warning(
            f"[Checkout user={user_id}] payment {pid} belongs to user={payment.user_id} via {payment.gateway}, "
            f"not this {staging.gateway.value} checkout"
        )
        raise PaymentNotConfirmed(pid, "OTHER_CHECKOUT")
    if payment.amount_cents != staging.total_cents:
        log.warning(
            f"[Checkout user={user_id}] payment {pid} was started for {payment.amount_cents} cents "
            f"but the staged total is {staging.total_cents}"
        )
        raise PaymentNotConfirmed(pid, "AMOUNT_MISMATCH")


class OrderReconciler:
    def __init__(self, db: Session, cart_store: CartStore, checkout_store: CheckoutSessionStore,
                 publish: Optional[Publisher] = None, max_attempts: int = 2, currency: str = "SGD"):
        self.db = db
        self.cart_store = cart_store
        self.checkout_store = checkout_store
        self.publish = publish or _no_publish
        self.max_attempts = max(1, max_attempts)
        self.currency = currency

    def find_order(self, provider_payment_id: str) -> Optional[Order]:
        if not provider_payment_id:
            return None
        stmt = select(Order).where(Order.provider_payment_id == provider_payment_id)
        return self.db.execute(stmt).scalars().first()

    def replay(self, user_id: int, order: Order, clear_session: bool = True) -> ReconcileResult:
        """An order already exists for this payment: point at it.

        The session is only torn down when it still belongs to the checkout that
        produced the order; a refreshed return URL must not wipe a newer cart.
        """
        pid = order.provider_payment_id
        if order.user_id != user_id:
            log.warning(f"[Checkout user={user_id}] refused return for payment {pid} owned by user={order.user_id}")
            raise PaymentNotConfirmed(pid, "OTHER_CHECKOUT")
        log.info(f"[Checkout user={user_id}] payment {pid} already reconciled as order {order.id}")
        if not clear_session:
            return ReconcileResult(
                state=CheckoutState.PAID_RECORDED,
                order_id=order.id,
                history=CONFIRMED_PATH + [CheckoutState.PAID_RECORDED],
                replayed=True,
            )
        self._clear_session(user_id)
        return ReconcileResult(
            state=CheckoutState.SESSION_CLEARED,
            order_id=order.id,
            history=CONFIRMED_PATH + [CheckoutState.SESSION_CLEARED],
            replayed=True,
        )

    def reconcile(self, user_id: int, staging: CheckoutStaging, payment: PendingPayment,
                  payment_reference: Optional[str] = None) -> ReconcileResult:
        pid = payment.provider_payment_id
        if payment.status != PendingStatus.COMPLETED.value:
            raise PaymentNotConfirmed(pid, payment.status)
        check_payment_binding(user_id, staging, payment)

        existing = self.find_order(pid)
        if existing is not None:
            return self.replay(user_id, existing)

        reference = payment_reference or pid
        attempt = 0
        while True:
            attempt += 1
            history = list(CONFIRMED_PATH)
            try:
                order = self._create_order(user_id, staging, pid)
                history.append(CheckoutState.ORDER_CREATED)
                self._adjust_stock(staging)
                history.append(CheckoutState.STOCK_ADJUSTED)
                self._record_payment(order, staging, reference)
                history.append(CheckoutState.PAID_RECORDED)
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                existing = self.find_order(pid)
                if existing is not None:
                    return self.replay(user_id, existing)
                self._fail(user_id, staging, pid, "integrity error while writing the order")
            except InsufficientStock as e:
                self.db.rollback()
                self._fail(user_id, staging, pid, str(e))
            except OperationalError as e:
                self.db.rollback()
                if attempt < self.max_attempts:
                    log.warning(f"[Checkout user={user_id}] transient database error on attempt {attempt}, retrying: {e.orig}")
                    continue
                self._fail(user_id, staging, pid, f"database unavailable after {attempt} attempts")
            except SQLAlchemyError as e:
                self.db.rollback()
                self._fail(user_id, staging, pid, f"database error: {e.__class__.__name__}")

        log.info(f"[Checkout user={user_id}] order {order.id} created for {staging.gateway.value} payment {pid} ({order.total_cents} {order.currency})")
        self._clear_session(user_id)
        history.append(CheckoutState.SESSION_CLEARED)
        self.publish(str(order.id), {
            "type": "order.paid",
            "order_id": order.id,
            "user_id": user_id,
            "amount_cents": order.total_cents,
            "payment_method": order.payment_method,
            "payment_reference": order.payment_reference,
            "items": [
                {"product_id": line.product_id, "qty": line.qty, "unit_price_cents": line.unit_price_cents}
                for line in staging.cart
            ],
        })
        return ReconcileResult(state=CheckoutState.SESSION_CLEARED, order_id=order.id, history=history)

    # --- transitions ---
    def _create_order(self, user_id: int, staging: CheckoutStaging, provider_payment_id: str) -> Order:
        order = Order(
            user_id=user_id,
            delivery_method=staging.delivery_method.value,
            address=staging.address,
            payment_method=staging.gateway.value,
            payment_status=PaymentStatus.UNPAID.value,
            provider_payment_id=provider_payment_id,
            subtotal_cents=staging.subtotal_cents,
            discount_cents=staging.discount_cents,
            voucher_code=staging.voucher_code,
            total_cents=staging.total_cents,
            currency=self.currency,
            status="CREATED",
        )
        # staged prices, never the current catalog price
        for line in staging.cart:
            order.items.append(OrderItem(
                product_id=line.product_id,
                qty=line.qty,
                unit_price_cents=line.unit_price_cents,
                title_snapshot=line.title,
            ))
        self.db.add(order)
        self.db.flush()
        return order

    def _adjust_stock(self, staging: CheckoutStaging):
        for line in staging.cart:
            stmt = (
                update(Inventory)
                .where(Inventory.product_id == line.product_id, Inventory.in_stock >= line.qty)
                .values(in_stock=Inventory.in_stock - line.qty)
                .execution_options(synchronize_session=False)
            )
            if self.db.execute(stmt).rowcount != 1:
                raise InsufficientStock(line.product_id, line.qty)

    def _record_payment(self, order: Order, staging: CheckoutStaging, payment_reference: str):
        order.payment_status = PaymentStatus.PAID.value
        order.payment_method = staging.gateway.value
        order.payment_reference = payment_reference
        order.status = "PAID"
        self.db.flush()

    # --- exits ---
    def _clear_session(self, user_id: int):
        self.cart_store.clear_cart(user_id)
        self.checkout_store.clear(user_id)

    def _fail(self, user_id: int, staging: CheckoutStaging, provider_payment_id: str, reason: str):
        log.critical(
            f"[Checkout user={user_id}] RECONCILE_ERROR payment {provider_payment_id} via {staging.gateway.value} "
            f"was captured but no order was written: {reason}. Manual follow-up required."
        )
        self.publish(provider_payment_id, {
            "type": "order.reconcile_failed",
            "provider_payment_id": provider_payment_id,
            "gateway": staging.gateway.value,
            "user_id": user_id,
            "reason": reason,
        })
        raise ReconcileError(provider_payment_id, reason)
