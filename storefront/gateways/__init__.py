from typing import Optional

import httpx

from storefront.checkout.schemas import PaymentGateway
from storefront.core.config import Settings
from storefront.gateways.airwallex import AirwallexGateway
from storefront.gateways.base import (
    TOKENS, Confirmation, GatewayAdapter, NormalizedStatus, WebhookResult,
    close_shared_http_client, format_amount, parse_amount,
)
from storefront.gateways.nets_qr import NetsQrGateway
from storefront.gateways.paypal import PayPalGateway
from storefront.gateways.stripe_checkout import StripeGateway
from storefront.store.pending_payments import PendingPaymentStore

ADAPTERS = {
    PaymentGateway.PAYPAL: (PayPalGateway, "paypal"),
    PaymentGateway.STRIPE: (StripeGateway, "stripe"),
    PaymentGateway.AIRWALLEX: (AirwallexGateway, "airwallex"),
    PaymentGateway.NETS_QR: (NetsQrGateway, "nets"),
}


def build_adapter(gateway: PaymentGateway, settings: Settings, pending: PendingPaymentStore,
                  http: Optional[httpx.Client] = None) -> GatewayAdapter:
    cls, config_attr = ADAPTERS[PaymentGateway(gateway)]
    return cls(
        getattr(settings, config_attr),
        pending,
        settings.STORE_CURRENCY,
        http=http,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )


__all__ = [
    "build_adapter", "GatewayAdapter", "Confirmation", "NormalizedStatus", "WebhookResult",
    "format_amount", "parse_amount", "close_shared_http_client", "TOKENS",
]
