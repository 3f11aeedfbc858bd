import stripe

from storefront.checkout.schemas import InitiateResult, PaymentGateway
from storefront.core.errors import GatewayRequestError
from storefront.core.logging_config import get_logger
from storefront.gateways.base import Confirmation, GatewayAdapter, NormalizedStatus, parse_amount

log = get_logger(__name__)


class StripeGateway(GatewayAdapter):
    """Stripe Checkout Sessions through the stripe SDK; polled when the browser returns."""

    gateway = PaymentGateway.STRIPE
    return_query_params = ("session_id",)

    def __init__(self, *args, sessions=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.sessions = sessions or stripe.checkout.Session

    def _create(self, amount: str, order_ref: str, return_context: dict) -> InitiateResult:
        # one line for the staged total so voucher discounts are charged correctly
        unit_amount = parse_amount(amount)
        try:
            session = self.sessions.create(
                api_key=self.config.secret_key,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": self.currency.lower(),
                        "product_data": {"name": f"Order {order_ref}"},
                        "unit_amount": unit_amount,
                    },
                    "quantity": 1,
                }],
                metadata={"order_ref": order_ref},
                success_url=f"{return_context['return_url']}?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=return_context["cancel_url"],
            )
        except stripe.StripeError as e:
            raise self._wrap(e)
        return InitiateResult(provider_payment_id=session["id"], redirect_url=session["url"])

    def _check(self, provider_payment_id: str) -> Confirmation:
        try:
            session = self.sessions.retrieve(provider_payment_id, api_key=self.config.secret_key)
        except stripe.StripeError as e:
            raise self._wrap(e)
        paid = session.get("payment_status") == "paid"
        return Confirmation(
            provider_payment_id=provider_payment_id,
            status=NormalizedStatus.SUCCEEDED if paid else NormalizedStatus.FAILED,
            payment_reference=session.get("payment_intent") or session.get("id") or provider_payment_id,
            raw={"id": session.get("id"), "payment_status": session.get("payment_status")},
        )

    def _wrap(self, e: "stripe.StripeError") -> GatewayRequestError:
        code = getattr(e, "code", None) or type(e).__name__
        log.error(f"[Payment {self.gateway.value}] Stripe error {code}: {e}")
        return GatewayRequestError(self.gateway.value, str(code), str(e), getattr(e, "http_status", None))
