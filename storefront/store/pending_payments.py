"""
Pending-payment store.

In-flight payment state keyed by the provider-issued id (PayPal order id,
Stripe checkout session id, Airwallex intent id, NETS retrieval ref). It lives
in the database rather than the browser session so a webhook arriving after
the session is gone can still be recorded.

Terminal statuses are sticky: the first COMPLETED/FAILED write wins and any
later write with a different status is logged and dropped.
"""

from typing import Optional
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.logging_config import get_logger
from storefront.db.models import PendingPayment, PendingStatus, now_utc

log = get_logger(__name__)


class PendingPaymentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, provider_payment_id: str) -> Optional[PendingPayment]:
        if not provider_payment_id:
            return None
        return self.db.get(PendingPayment, provider_payment_id)

    def put(self, gateway: str, provider_payment_id: str, status: str, raw_payload: Optional[dict] = None,
            user_id: Optional[int] = None, amount_cents: Optional[int] = None) -> PendingPayment:
        status = PendingStatus(status).value
        existing = self.get(provider_payment_id)
        if existing is None:
            rec = PendingPayment(
                provider_payment_id=provider_payment_id,
                gateway=gateway,
                status=status,
                raw_payload=raw_payload,
                user_id=user_id,
                amount_cents=amount_cents,
                created_at=now_utc(),
                last_updated=now_utc(),
            )
            self.db.add(rec)
            try:
                self.db.commit()
                log.info(f"[Payment {gateway} {provider_payment_id}] recorded as {status}")
                return rec
            except IntegrityError:
                # a concurrent writer inserted first; fall through to the update path
                self.db.rollback()
                existing = self.get(provider_payment_id)

        if user_id is not None:
            self._claim(existing, user_id, amount_cents)
        return self._transition(existing, status, raw_payload)

    def _claim(self, rec: PendingPayment, user_id: int, amount_cents: Optional[int]):
        """Bind an unowned record (e.g. one a webhook created first) to the checkout that started it."""
        stmt = (
            update(PendingPayment)
            .where(PendingPayment.provider_payment_id == rec.provider_payment_id, PendingPayment.user_id.is_(None))
            .values(user_id=user_id, amount_cents=amount_cents)
        )
        claimed = self.db.execute(stmt).rowcount
        self.db.commit()
        self.db.refresh(rec)
        if not claimed and rec.user_id != user_id:
            log.warning(f"[Payment {rec.gateway} {rec.provider_payment_id}] already owned by user={rec.user_id}, not rebinding to user={user_id}")

    def _transition(self, rec: PendingPayment, status: str, raw_payload: Optional[dict]) -> PendingPayment:
        pid = rec.provider_payment_id
        if rec.is_terminal:
            if status != rec.status:
                log.warning(
                    f"[Payment {rec.gateway} {pid}] ignoring {status} write, already terminal as {rec.status}"
                )
            return rec

        stmt = (
            update(PendingPayment)
            .where(PendingPayment.provider_payment_id == pid, PendingPayment.status == PendingStatus.PENDING.value)
            .values(status=status, raw_payload=raw_payload, last_updated=now_utc())
        )
        result = self.db.execute(stmt)
        self.db.commit()
        self.db.refresh(rec)
        if result.rowcount == 0:
            log.warning(f"[Payment {rec.gateway} {pid}] lost race, status is {rec.status}; {status} not applied")
        elif status != PendingStatus.PENDING.value:
            log.info(f"[Payment {rec.gateway} {pid}] PENDING -> {status}")
        return rec
