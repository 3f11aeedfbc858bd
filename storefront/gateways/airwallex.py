import time
import uuid
from datetime import datetime

from storefront.checkout.schemas import InitiateResult, PaymentGateway
from storefront.core.errors import GatewayRequestError
from storefront.core.logging_config import get_logger
from storefront.gateways.base import TOKENS, Confirmation, GatewayAdapter, NormalizedStatus

log = get_logger(__name__)

SUCCESS_STATUSES = {"SUCCEEDED", "AUTHORIZED"}


class AirwallexGateway(GatewayAdapter):
    """Airwallex payment intents; the browser completes payment on the hosted drop-in."""

    gateway = PaymentGateway.AIRWALLEX
    return_query_params = ("intent_id", "intentId", "payment_intent_id", "id")

    def _access_token(self) -> str:
        key = (self.gateway.value, self.config.api_base, self.config.client_id)
        token = TOKENS.get(key)
        if token:
            return token
        now = time.time()
        data = self._request(
            "POST",
            f"{self.config.api_base}/api/v1/authentication/login",
            json={},
            headers={"x-api-key": self.config.api_key, "x-client-id": self.config.client_id},
        )
        token = data.get("token") or data.get("access_token")
        if not token:
            raise GatewayRequestError(self.gateway.value, "no_token", "Login response had no token")
        TOKENS.put(key, token, self._expiry(data.get("expires_at") or data.get("expiresAt"), now))
        return token

    @staticmethod
    def _expiry(expires_at, now: float) -> float:
        if expires_at:
            try:
                return datetime.fromisoformat(str(expires_at).replace("Z", "+00:00")).timestamp()
            except ValueError:
                log.warning(f"Unparseable Airwallex token expiry {expires_at!r}")
        return now + 25 * 60

    def _create(self, amount: str, order_ref: str, return_context: dict) -> InitiateResult:
        payload = {
            "request_id": str(uuid.uuid4()),
            "amount": amount,
            "currency": self.currency,
            "merchant_order_id": order_ref,
            "return_url": return_context["return_url"],
        }
        intent = self._request(
            "POST",
            f"{self.config.api_base}/api/v1/pa/payment_intents/create",
            json=payload,
            headers={"Authorization": f"Bearer {self._access_token()}"},
        )
        if not intent.get("id"):
            raise GatewayRequestError(self.gateway.value, "no_intent", "Intent response had no id")
        return InitiateResult(
            provider_payment_id=intent["id"],
            embedded={
                "intent_id": intent["id"],
                "client_secret": intent.get("client_secret"),
                "currency": self.currency,
                "country_code": self.config.country,
                "env": self.config.env,
                "success_url": return_context["return_url"],
                "fail_url": return_context["cancel_url"],
            },
            session_artifacts={"client_secret": intent.get("client_secret")},
        )

    def _check(self, provider_payment_id: str) -> Confirmation:
        intent = self._request(
            "GET",
            f"{self.config.api_base}/api/v1/pa/payment_intents/{provider_payment_id}",
            headers={"Authorization": f"Bearer {self._access_token()}"},
        )
        status = (intent.get("status") or "").upper()
        attempt = intent.get("latest_payment_attempt") or {}
        return Confirmation(
            provider_payment_id=provider_payment_id,
            status=NormalizedStatus.SUCCEEDED if status in SUCCESS_STATUSES else NormalizedStatus.FAILED,
            payment_reference=attempt.get("id") or intent.get("id") or provider_payment_id,
            raw={"id": intent.get("id"), "status": status},
        )
