import time

import httpx

from storefront.checkout.schemas import InitiateResult, PaymentGateway
from storefront.core.errors import GatewayRequestError
from storefront.core.logging_config import get_logger
from storefront.gateways.base import TOKENS, Confirmation, GatewayAdapter, NormalizedStatus

log = get_logger(__name__)


class PayPalGateway(GatewayAdapter):
    """PayPal Orders v2: create with intent CAPTURE, capture on browser return."""

    gateway = PaymentGateway.PAYPAL
    return_query_params = ("token",)

    def _access_token(self) -> str:
        key = (self.gateway.value, self.config.api_base, self.config.client_id)
        token = TOKENS.get(key)
        if token:
            return token
        data = self._request(
            "POST",
            f"{self.config.api_base}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=httpx.BasicAuth(self.config.client_id, self.config.client_secret),
            headers={"Accept": "application/json"},
        )
        token = data["access_token"]
        TOKENS.put(key, token, time.time() + int(data.get("expires_in", 300)))
        return token

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _create(self, amount: str, order_ref: str, return_context: dict) -> InitiateResult:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": order_ref,
                "amount": {"currency_code": self.currency, "value": amount},
            }],
            "application_context": {
                "brand_name": self.config.brand_name,
                "return_url": return_context["return_url"],
                "cancel_url": return_context["cancel_url"],
            },
        }
        headers = {**self._headers(), "Prefer": "return=representation"}
        order = self._request("POST", f"{self.config.api_base}/v2/checkout/orders", json=body, headers=headers)
        approve = next((link["href"] for link in order.get("links", []) if link.get("rel") == "approve"), None)
        if not order.get("id") or not approve:
            raise GatewayRequestError(self.gateway.value, "no_approve_link", "Order response had no approve link")
        return InitiateResult(provider_payment_id=order["id"], redirect_url=approve)

    def _check(self, provider_payment_id: str) -> Confirmation:
        capture = self._request(
            "POST",
            f"{self.config.api_base}/v2/checkout/orders/{provider_payment_id}/capture",
            headers=self._headers(),
        )
        status = NormalizedStatus.SUCCEEDED if capture.get("status") == "COMPLETED" else NormalizedStatus.FAILED
        return Confirmation(
            provider_payment_id=provider_payment_id,
            status=status,
            payment_reference=self._capture_id(capture) or provider_payment_id,
            raw=capture,
        )

    @staticmethod
    def _capture_id(capture: dict):
        for unit in capture.get("purchase_units", []):
            for cap in unit.get("payments", {}).get("captures", []):
                if cap.get("id"):
                    return cap["id"]
        return capture.get("id")
