from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.api.deps import get_flow
from storefront.checkout.flow import CheckoutFlow
from storefront.checkout.schemas import CheckoutForm
from storefront.core.auth import get_current_user_id
from storefront.core.errors import CheckoutBusy, ValidationError, VoucherRejected

router = APIRouter()

class VoucherApply(BaseModel):
    code: str = Field(min_length=1, max_length=64)

@router.get("/v1/checkout")
def checkout_summary(user_id: int = Depends(get_current_user_id), flow: CheckoutFlow = Depends(get_flow)):
    return flow.summary(user_id)

@router.post("/v1/checkout/voucher")
def apply_voucher(payload: VoucherApply, user_id: int = Depends(get_current_user_id),
                  flow: CheckoutFlow = Depends(get_flow)):
    try:
        flow.apply_voucher(user_id, payload.code)
    except VoucherRejected as e:
        detail = {"reason": e.reason, "message": e.message}
        if e.min_spend_cents is not None:
            detail["min_spend_cents"] = e.min_spend_cents
        raise HTTPException(status_code=400, detail=detail)
    return flow.summary(user_id)

@router.delete("/v1/checkout/voucher")
def remove_voucher(user_id: int = Depends(get_current_user_id), flow: CheckoutFlow = Depends(get_flow)):
    flow.remove_voucher(user_id)
    return flow.summary(user_id)

@router.post("/v1/checkout")
def stage_checkout(form: CheckoutForm, user_id: int = Depends(get_current_user_id),
                   flow: CheckoutFlow = Depends(get_flow)):
    try:
        staged = flow.stage_checkout(user_id, form)
    except ValidationError as e:
        # the form goes back so the page can be re-rendered without losing input
        return JSONResponse(status_code=422, content={
            "field": e.field,
            "message": e.message,
            "form": form.model_dump(),
        })
    except CheckoutBusy:
        raise HTTPException(status_code=409, detail="Checkout already in progress")
    return {
        "gateway": staged.gateway.value,
        "delivery_method": staged.delivery_method.value,
        "subtotal_cents": staged.subtotal_cents,
        "discount_cents": staged.discount_cents,
        "total_cents": staged.total_cents,
        "voucher_code": staged.voucher_code,
        "start_url": f"/storefront/v1/payments/{staged.gateway.slug}/start",
    }

@router.post("/v1/checkout/cancel")
def cancel_checkout(user_id: int = Depends(get_current_user_id), flow: CheckoutFlow = Depends(get_flow)):
    flow.cancel_checkout(user_id)
    return {"status": "cancelled"}
