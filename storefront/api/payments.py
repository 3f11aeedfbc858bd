from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from storefront.api.deps import get_flow
from storefront.checkout.flow import CheckoutFlow
from storefront.checkout.schemas import PaymentGateway
from storefront.core.auth import get_current_user_id
from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    AmountFormatError, CheckoutBusy, GatewayRequestError, GatewayUnavailable,
    PaymentNotConfirmed, ReconcileError, StagingMissing,
)
from storefront.core.logging_config import get_logger
from storefront.gateways import ADAPTERS

log = get_logger(__name__)

router = APIRouter()

FAILURE_MESSAGES = {
    "no_staging": "Your checkout session has expired. Please check out again.",
    "payment_failed": "Payment was not completed. You have not been charged.",
    "reconcile_failed": "Your payment was received but we could not complete your order. Our team has been notified and will contact you.",
    "cancelled": "Payment was cancelled.",
}

def _gateway(slug: str) -> PaymentGateway:
    try:
        return PaymentGateway.from_slug(slug)
    except ValueError:
        raise HTTPException(status_code=404, detail="Unknown payment gateway")

def _failure_redirect(settings: Settings, gateway: PaymentGateway, code: str) -> RedirectResponse:
    if gateway is PaymentGateway.NETS_QR and code != "cancelled":
        url = f"{settings.FRONTEND_BASE_URL}/payment/nets/failed?{urlencode({'error': code})}"
    else:
        url = f"{settings.FRONTEND_BASE_URL}/checkout?{urlencode({'error': code})}"
    return RedirectResponse(url, status_code=303)

@router.post("/v1/payments/nets/webhook")
def nets_webhook(payload: dict = Body(...), flow: CheckoutFlow = Depends(get_flow)):
    # acknowledged even for unknown ids; NETS redelivers otherwise
    result = flow.record_webhook(PaymentGateway.NETS_QR, payload)
    if result.provider_payment_id is None:
        log.warning(f"[Payment NETS_QR] webhook without payment id: keys={sorted(payload)}")
    return {"received": True, "timestamp": datetime.now(timezone.utc).isoformat()}

@router.get("/v1/payments/nets/status/{payment_id}")
def nets_status(payment_id: str, user_id: int = Depends(get_current_user_id), flow: CheckoutFlow = Depends(get_flow)):
    try:
        status = flow.poll_status(PaymentGateway.NETS_QR, payment_id)
    except GatewayUnavailable:
        raise HTTPException(status_code=503, detail="NETS QR is not available")
    except GatewayRequestError:
        raise HTTPException(status_code=502, detail="Could not reach NETS, please try again")
    return {"payment_id": payment_id, "status": status}

@router.get("/v1/payments/nets/failed")
def nets_failed(error: str = "payment_failed", settings: Settings = Depends(get_settings)):
    return {
        "error": error,
        "message": FAILURE_MESSAGES.get(error, FAILURE_MESSAGES["payment_failed"]),
        "retry_url": f"{settings.FRONTEND_BASE_URL}/checkout",
    }

@router.post("/v1/payments/{gateway}/start")
def start_payment(gateway: str, user_id: int = Depends(get_current_user_id), flow: CheckoutFlow = Depends(get_flow)):
    gw = _gateway(gateway)
    try:
        result = flow.start_payment(user_id, gw)
    except StagingMissing as e:
        raise HTTPException(status_code=409, detail=e.message)
    except CheckoutBusy:
        raise HTTPException(status_code=409, detail="Checkout already in progress")
    except GatewayUnavailable:
        raise HTTPException(status_code=503, detail=f"{gw.value} is not available right now. Please choose another payment method.")
    except GatewayRequestError:
        raise HTTPException(status_code=502, detail=f"Could not start {gw.value} payment. Please try again.")
    except AmountFormatError:
        raise HTTPException(status_code=400, detail="Invalid payment amount")
    return {
        "gateway": gw.value,
        "provider_payment_id": result.provider_payment_id,
        "redirect_url": result.redirect_url,
        "embedded": result.embedded,
    }

@router.get("/v1/payments/{gateway}/return")
def payment_return(gateway: str, request: Request, user_id: int = Depends(get_current_user_id),
                   flow: CheckoutFlow = Depends(get_flow), settings: Settings = Depends(get_settings)):
    gw = _gateway(gateway)
    adapter_cls, _ = ADAPTERS[gw]
    provider_payment_id: Optional[str] = next(
        (request.query_params[p] for p in adapter_cls.return_query_params if request.query_params.get(p)), None
    )
    try:
        result = flow.complete_payment(user_id, gw, provider_payment_id)
    except StagingMissing:
        return _failure_redirect(settings, gw, "no_staging")
    except (PaymentNotConfirmed, GatewayUnavailable, GatewayRequestError) as e:
        log.warning(f"[Payment {gw.value}] return for user={user_id} not confirmed: {e}")
        return _failure_redirect(settings, gw, "payment_failed")
    except ReconcileError:
        return _failure_redirect(settings, gw, "reconcile_failed")
    except CheckoutBusy:
        raise HTTPException(status_code=409, detail="Checkout already in progress")
    return RedirectResponse(f"{settings.FRONTEND_BASE_URL}/invoice/{result.order_id}", status_code=303)

@router.get("/v1/payments/{gateway}/cancel")
def payment_cancel(gateway: str, user_id: int = Depends(get_current_user_id),
                   flow: CheckoutFlow = Depends(get_flow), settings: Settings = Depends(get_settings)):
    gw = _gateway(gateway)
    flow.cancel_payment(user_id, gw)
    return _failure_redirect(settings, gw, "cancelled")
