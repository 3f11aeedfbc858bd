"""
Checkout session state.

Everything staged for one user's checkout attempt lives in a single redis
hash ``checkout:{user_id}``:

    staging             CheckoutStaging JSON
    voucher             AppliedVoucher JSON
    gw:<GATEWAY>:<name> gateway artifacts (payment id, client secret, ...)

``clear()`` is a single DEL, so the next request on the same session either
sees the full staged state or none of it.
"""

from contextlib import contextmanager
from typing import Optional

from redis import Redis
from redis.exceptions import LockError

from storefront.checkout.schemas import AppliedVoucher, CheckoutStaging, PaymentGateway
from storefront.core.errors import CheckoutBusy
from storefront.core.logging_config import get_logger

log = get_logger(__name__)

PAYMENT_ID = "payment_id"


def checkout_key(user_id: int) -> str:
    return f"checkout:{user_id}"


def lock_key(user_id: int) -> str:
    return f"checkout-lock:{user_id}"


def _artifact_field(gateway: PaymentGateway, name: str) -> str:
    return f"gw:{gateway.value}:{name}"


class CheckoutSessionStore:
    def __init__(self, r: Redis, ttl_seconds: int = 3600, lock_timeout: float = 30.0, lock_wait: float = 5.0):
        self.r = r
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout
        self.lock_wait = lock_wait

    def _write(self, user_id: int, mapping: dict):
        key = checkout_key(user_id)
        pipe = self.r.pipeline()
        pipe.hset(key, mapping=mapping)
        pipe.expire(key, self.ttl_seconds)
        pipe.execute()

    # --- staging ---
    def save_staging(self, user_id: int, staging: CheckoutStaging):
        self._write(user_id, {"staging": staging.model_dump_json()})

    def get_staging(self, user_id: int) -> Optional[CheckoutStaging]:
        raw = self.r.hget(checkout_key(user_id), "staging")
        if not raw:
            return None
        return CheckoutStaging.model_validate_json(raw)

    # --- voucher ---
    def save_voucher(self, user_id: int, voucher: AppliedVoucher):
        self._write(user_id, {"voucher": voucher.model_dump_json()})

    def get_voucher(self, user_id: int) -> Optional[AppliedVoucher]:
        raw = self.r.hget(checkout_key(user_id), "voucher")
        return AppliedVoucher.model_validate_json(raw) if raw else None

    def clear_voucher(self, user_id: int):
        self.r.hdel(checkout_key(user_id), "voucher")

    # --- gateway artifacts ---
    def set_gateway_artifacts(self, user_id: int, gateway: PaymentGateway, **artifacts):
        mapping = {_artifact_field(gateway, k): str(v) for k, v in artifacts.items() if v is not None}
        if mapping:
            self._write(user_id, mapping)

    def get_gateway_artifact(self, user_id: int, gateway: PaymentGateway, name: str = PAYMENT_ID) -> Optional[str]:
        return self.r.hget(checkout_key(user_id), _artifact_field(gateway, name))

    def clear_gateway(self, user_id: int, gateway: PaymentGateway):
        key = checkout_key(user_id)
        prefix = f"gw:{gateway.value}:"
        fields = [f for f in self.r.hkeys(key) if f.startswith(prefix)]
        if fields:
            self.r.hdel(key, *fields)

    def clear(self, user_id: int):
        self.r.delete(checkout_key(user_id))

    @contextmanager
    def lock(self, user_id: int):
        """Serialize checkout requests of one user (double submits, webhook+redirect races)."""
        lk = self.r.lock(lock_key(user_id), timeout=self.lock_timeout, blocking_timeout=self.lock_wait)
        if not lk.acquire():
            log.warning(f"[Checkout user={user_id}] lock busy")
            raise CheckoutBusy(user_id)
        try:
            yield
        finally:
            try:
                lk.release()
            except LockError:
                log.error(f"[Checkout user={user_id}] lock expired before release")
