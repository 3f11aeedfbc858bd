"""
Shared contract for payment gateway adapters.

Each adapter turns a generic "create payment" / "check payment" intent into
provider calls and maps whatever the provider answers onto
``NormalizedStatus``, so the reconciliation engine never looks at
provider-specific field names.
"""

import threading
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Tuple

import httpx
from pydantic import BaseModel

from storefront.checkout.schemas import InitiateResult, PaymentGateway
from storefront.core.errors import AmountFormatError, GatewayRequestError, GatewayUnavailable
from storefront.core.logging_config import get_logger
from storefront.db.models import PendingStatus
from storefront.store.pending_payments import PendingPaymentStore

log = get_logger(__name__)

TWO_PLACES = Decimal("0.01")

_http: Optional[httpx.Client] = None


class NormalizedStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PENDING = "PENDING"

    def as_pending_status(self) -> str:
        return {
            NormalizedStatus.SUCCEEDED: PendingStatus.COMPLETED,
            NormalizedStatus.FAILED: PendingStatus.FAILED,
            NormalizedStatus.PENDING: PendingStatus.PENDING,
        }[self].value

    @classmethod
    def from_pending_status(cls, status: str) -> "NormalizedStatus":
        return {
            PendingStatus.COMPLETED.value: cls.SUCCEEDED,
            PendingStatus.FAILED.value: cls.FAILED,
        }.get(status, cls.PENDING)


class Confirmation(BaseModel):
    provider_payment_id: str
    status: NormalizedStatus
    payment_reference: Optional[str] = None
    raw: Optional[dict] = None


class WebhookResult(BaseModel):
    provider_payment_id: Optional[str] = None
    status: Optional[NormalizedStatus] = None


def format_amount(cents: int) -> str:
    """Integer minor units -> two-decimal string, e.g. 4500 -> "45.00"."""
    if isinstance(cents, bool) or not isinstance(cents, int) or cents < 0:
        raise AmountFormatError(cents)
    text = f"{cents // 100}.{cents % 100:02d}"
    if parse_amount(text) != cents:
        raise AmountFormatError(cents)
    return text


def parse_amount(value) -> int:
    """Two-decimal amount (str, int, Decimal) -> integer minor units."""
    if isinstance(value, (bool, float)):
        # floats are exactly what drifts; providers must hand us strings
        raise AmountFormatError(value)
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite() or amount < 0 or amount != amount.quantize(TWO_PLACES):
            raise AmountFormatError(value)
    except (InvalidOperation, ValueError):
        raise AmountFormatError(value)
    return int(amount * 100)


def shared_http_client(timeout: float = 10.0) -> httpx.Client:
    """One pooled client per process, shared by every adapter that is not handed its own."""
    global _http
    if _http is None or _http.is_closed:
        _http = httpx.Client(timeout=timeout)
    return _http


def close_shared_http_client():
    global _http
    if _http is not None:
        _http.close()
        _http = None


class TokenCache:
    """OAuth access tokens keyed by (gateway, api base, client id), shared by all adapter instances."""

    def __init__(self, leeway_seconds: int = 60):
        self.leeway_seconds = leeway_seconds
        self._tokens = {}
        self._lock = threading.Lock()

    def get(self, key) -> Optional[str]:
        with self._lock:
            token, expires_at = self._tokens.get(key, (None, 0.0))
        if token and expires_at - self.leeway_seconds > time.time():
            return token
        return None

    def put(self, key, token: str, expires_at: float):
        with self._lock:
            self._tokens[key] = (token, expires_at)

    def clear(self):
        with self._lock:
            self._tokens.clear()


TOKENS = TokenCache()


class GatewayAdapter(ABC):
    gateway: PaymentGateway
    # query parameter names the provider uses for the id on browser return
    return_query_params: Tuple[str, ...] = ()

    def __init__(self, config, pending: PendingPaymentStore, currency: str,
                 http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.config = config
        self.pending = pending
        self.currency = currency
        self.http = http or shared_http_client(timeout)

    def _require_configured(self):
        if not self.config.is_configured:
            log.error(f"[Payment {self.gateway.value}] credentials missing")
            raise GatewayUnavailable(self.gateway.value)

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = self.http.request(method, url, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            code, message = self._provider_error(e.response)
            log.error(f"[Payment {self.gateway.value}] HTTP {e.response.status_code} from {url}: {code} {message}")
            raise GatewayRequestError(self.gateway.value, code, message, e.response.status_code)
        except httpx.RequestError as e:
            log.error(f"[Payment {self.gateway.value}] {url} unreachable: {e}")
            raise GatewayRequestError(self.gateway.value, "network_error", str(e))
        except ValueError:
            log.error(f"[Payment {self.gateway.value}] non-JSON response from {url}")
            raise GatewayRequestError(self.gateway.value, "bad_response", "Response was not JSON")

    @staticmethod
    def _provider_error(response: httpx.Response) -> Tuple[str, str]:
        try:
            body = response.json()
        except ValueError:
            return str(response.status_code), response.text[:200]
        if not isinstance(body, dict):
            return str(response.status_code), str(body)[:200]
        code = body.get("name") or body.get("code") or body.get("error") or str(response.status_code)
        message = body.get("message") or body.get("error_description") or body.get("error_message") or ""
        return str(code), str(message)

    def initiate(self, amount_cents: int, order_ref: str, return_context: dict,
                 user_id: Optional[int] = None) -> InitiateResult:
        self._require_configured()
        amount = format_amount(amount_cents)
        result = self._create(amount, order_ref, return_context)
        self.pending.put(self.gateway.value, result.provider_payment_id, PendingStatus.PENDING.value,
                         {"order_ref": order_ref, "amount": amount},
                         user_id=user_id, amount_cents=amount_cents)
        log.info(f"[Payment {self.gateway.value} {result.provider_payment_id}] initiated for {order_ref} ({amount} {self.currency})")
        return result

    def confirm(self, provider_payment_id: str) -> Confirmation:
        self._require_configured()
        return self._check(provider_payment_id)

    def handle_webhook(self, payload: dict) -> WebhookResult:
        log.warning(f"[Payment {self.gateway.value}] webhook received but this gateway does not push status")
        raise GatewayRequestError(self.gateway.value, "unsupported", "Gateway does not push payment status")

    @abstractmethod
    def _create(self, amount: str, order_ref: str, return_context: dict) -> InitiateResult: ...

    @abstractmethod
    def _check(self, provider_payment_id: str) -> Confirmation: ...
