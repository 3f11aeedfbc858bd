"""
Checkout flow service driving staging, payment and reconciliation for the HTTP layer.

Staging, payment start and payment completion for one user run under that
user's checkout lock, so a double submit or a browser return racing another
tab cannot reconcile the same payment twice.
"""

import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from storefront.checkout import staging as staging_rules
from storefront.checkout import vouchers
from storefront.checkout.reconcile import OrderReconciler, Publisher, ReconcileResult, check_payment_binding
from storefront.checkout.schemas import (
    AppliedVoucher, CheckoutForm, CheckoutStaging, InitiateResult, PaymentGateway, subtotal_cents,
)
from storefront.core.config import Settings
from storefront.core.errors import PaymentNotConfirmed, StagingMissing
from storefront.core.logging_config import get_logger
from storefront.db.models import PendingStatus
from storefront.gateways.base import GatewayAdapter, NormalizedStatus, WebhookResult
from storefront.store.cart_store import CartStore
from storefront.store.checkout_store import PAYMENT_ID, CheckoutSessionStore
from storefront.store.pending_payments import PendingPaymentStore

log = get_logger(__name__)

AdapterFactory = Callable[[PaymentGateway], GatewayAdapter]


class CheckoutFlow:
    def __init__(self, db: Session, settings: Settings, cart_store: CartStore, checkout_store: CheckoutSessionStore,
                 pending: PendingPaymentStore, adapter_factory: AdapterFactory, publish: Optional[Publisher] = None):
        self.db = db
        self.settings = settings
        self.cart_store = cart_store
        self.checkout_store = checkout_store
        self.pending = pending
        self.adapter_factory = adapter_factory
        self.reconciler = OrderReconciler(
            db, cart_store, checkout_store,
            publish=publish,
            max_attempts=settings.RECONCILE_MAX_ATTEMPTS,
            currency=settings.STORE_CURRENCY,
        )

    # --- cart and voucher ---
    def cart_lines(self, user_id: int):
        return staging_rules.build_cart_snapshot(self.db, self.cart_store.get_cart(user_id))

    def summary(self, user_id: int) -> dict:
        lines = self.cart_lines(user_id)
        subtotal = subtotal_cents(lines)
        voucher = self.checkout_store.get_voucher(user_id)
        discount = min(voucher.discount_cents, subtotal) if voucher else 0
        return {
            "items": [dict(line.model_dump(), line_total_cents=line.line_total_cents) for line in lines],
            "voucher": voucher.model_dump() if voucher else None,
            "subtotal_cents": subtotal,
            "discount_cents": discount,
            "total_cents": max(0, subtotal - discount),
            "currency": self.settings.STORE_CURRENCY,
            "staging": self._staging_view(self.checkout_store.get_staging(user_id)),
        }

    @staticmethod
    def _staging_view(staging: Optional[CheckoutStaging]) -> Optional[dict]:
        if staging is None:
            return None
        return {"gateway": staging.gateway.value, "total_cents": staging.total_cents,
                "delivery_method": staging.delivery_method.value, "staged_at": staging.staged_at.isoformat()}

    def apply_voucher(self, user_id: int, code: str) -> AppliedVoucher:
        applied = vouchers.apply(self.db, self.cart_lines(user_id), code)
        self.checkout_store.save_voucher(user_id, applied)
        return applied

    def remove_voucher(self, user_id: int):
        self.checkout_store.clear_voucher(user_id)

    # --- staging ---
    def stage_checkout(self, user_id: int, form: CheckoutForm) -> CheckoutStaging:
        with self.checkout_store.lock(user_id):
            staged = staging_rules.stage(
                self.cart_lines(user_id),
                form.delivery_method,
                form.address,
                self.checkout_store.get_voucher(user_id),
                form.payment_method or form.payment_method_fallback,
            )
            for gateway in PaymentGateway:
                self.checkout_store.clear_gateway(user_id, gateway)
            self.checkout_store.save_staging(user_id, staged)
        log.info(f"[Checkout user={user_id}] staged {len(staged.cart)} lines, total {staged.total_cents} via {staged.gateway.value}")
        return staged

    def cancel_checkout(self, user_id: int):
        self.checkout_store.clear(user_id)
        log.info(f"[Checkout user={user_id}] cancelled")

    def _require_staging(self, user_id: int, gateway: PaymentGateway) -> CheckoutStaging:
        staged = self.checkout_store.get_staging(user_id)
        if staged is None:
            raise StagingMissing()
        if staged.gateway != gateway:
            raise StagingMissing(f"Checkout was staged for {staged.gateway.value}, not {gateway.value}")
        return staged

    # --- payment ---
    def return_context(self, gateway: PaymentGateway) -> dict:
        base = f"{self.settings.PUBLIC_BASE_URL.rstrip('/')}/storefront/v1/payments/{gateway.slug}"
        return {"return_url": f"{base}/return", "cancel_url": f"{base}/cancel"}

    def start_payment(self, user_id: int, gateway: PaymentGateway) -> InitiateResult:
        with self.checkout_store.lock(user_id):
            staged = self._require_staging(user_id, gateway)
            order_ref = f"{gateway.value}_{int(time.time())}_{user_id}"
            result = self.adapter_factory(gateway).initiate(
                staged.total_cents, order_ref, self.return_context(gateway), user_id=user_id,
            )
            self.checkout_store.set_gateway_artifacts(
                user_id, gateway, **{PAYMENT_ID: result.provider_payment_id}, **result.session_artifacts
            )
        return result

    def complete_payment(self, user_id: int, gateway: PaymentGateway,
                         provider_payment_id: Optional[str] = None) -> ReconcileResult:
        with self.checkout_store.lock(user_id):
            session_pid = self.checkout_store.get_gateway_artifact(user_id, gateway)
            pid = provider_payment_id or session_pid
            existing = self.reconciler.find_order(pid)
            if existing is not None:
                # only the checkout that started this payment is torn down
                return self.reconciler.replay(user_id, existing, clear_session=bool(session_pid) and session_pid == pid)

            staged = self._require_staging(user_id, gateway)
            if not pid:
                raise PaymentNotConfirmed("", "MISSING_ID")
            if session_pid and pid != session_pid:
                log.warning(f"[Payment {gateway.value} {pid}] return for user={user_id} does not match session payment {session_pid}")
                raise PaymentNotConfirmed(pid, "OTHER_CHECKOUT")

            stored = self.pending.get(pid)
            if stored is None:
                log.warning(f"[Payment {gateway.value} {pid}] return for user={user_id} names a payment this service never started")
                raise PaymentNotConfirmed(pid, "UNKNOWN")
            # checked before confirm: a refused payment is never captured
            check_payment_binding(user_id, staged, stored)

            if stored.is_terminal:
                record = stored
            else:
                confirmation = self.adapter_factory(gateway).confirm(pid)
                record = self.pending.put(
                    gateway.value, pid, confirmation.status.as_pending_status(),
                    {"payment_reference": confirmation.payment_reference, "provider": confirmation.raw},
                )
            status = NormalizedStatus.from_pending_status(record.status)
            log.info(f"[Payment {gateway.value} {pid}] confirmation for user={user_id}: {status.value}")

            if status is not NormalizedStatus.SUCCEEDED:
                self.checkout_store.clear_gateway(user_id, gateway)
                raise PaymentNotConfirmed(pid, record.status)

            reference = (record.raw_payload or {}).get("payment_reference") or pid
            return self.reconciler.reconcile(user_id, staged, record, reference)

    def cancel_payment(self, user_id: int, gateway: PaymentGateway):
        self.checkout_store.clear_gateway(user_id, gateway)
        log.info(f"[Payment {gateway.value}] cancelled by user={user_id}")

    def record_webhook(self, gateway: PaymentGateway, payload: dict) -> WebhookResult:
        """Record a pushed status. Orders are only ever created on the user's return."""
        return self.adapter_factory(gateway).handle_webhook(payload)

    def poll_status(self, gateway: PaymentGateway, provider_payment_id: str) -> str:
        stored = self.pending.get(provider_payment_id)
        if stored is not None and stored.is_terminal:
            return stored.status
        confirmation = self.adapter_factory(gateway).confirm(provider_payment_id)
        if confirmation.status is NormalizedStatus.PENDING:
            return PendingStatus.PENDING.value
        record = self.pending.put(
            gateway.value, provider_payment_id, confirmation.status.as_pending_status(),
            {"payment_reference": confirmation.payment_reference, "provider": confirmation.raw},
        )
        return record.status
