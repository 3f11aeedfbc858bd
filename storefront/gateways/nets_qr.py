"""
NETS QR push payments.

The shopper scans a QR code with a banking app; NETS then pushes the result
to our webhook. Confirmation on browser return therefore reads the
pending-payment store first and only polls the NETS query API when no
terminal status has been delivered yet.
"""

import uuid

from storefront.checkout.schemas import InitiateResult, PaymentGateway
from storefront.core.errors import GatewayRequestError
from storefront.core.logging_config import get_logger
from storefront.gateways.base import Confirmation, GatewayAdapter, NormalizedStatus, WebhookResult

log = get_logger(__name__)

REQUEST_PATH = "/api/v1/common/payments/nets-qr/request"
QUERY_PATH = "/api/v1/common/payments/nets-qr/query"
QR_TIMER_SECONDS = 300

SUCCESS_EVENTS = {"payment.completed", "payment.succeeded"}
FAILURE_EVENTS = {"payment.failed", "payment.declined"}
SUCCESS_WORDS = {"COMPLETED", "SUCCEEDED", "SUCCESS", "AUTHORIZED"}
FAILURE_WORDS = {"FAILED", "DECLINED", "CANCELLED", "EXPIRED"}


def status_from_txn(txn_status) -> NormalizedStatus:
    return NormalizedStatus.SUCCEEDED if txn_status == 1 else NormalizedStatus.FAILED


def status_from_word(word: str) -> NormalizedStatus:
    word = word.upper()
    if word in SUCCESS_WORDS:
        return NormalizedStatus.SUCCEEDED
    if word in FAILURE_WORDS:
        return NormalizedStatus.FAILED
    return NormalizedStatus.PENDING


def _is_number(v) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


class NetsQrGateway(GatewayAdapter):
    gateway = PaymentGateway.NETS_QR
    return_query_params = ("payment_id", "id")

    def _headers(self) -> dict:
        return {"api-key": self.config.api_key, "project-id": self.config.project_id}

    def _txn_id(self, order_ref: str) -> str:
        if self.config.txn_id_override:
            return self.config.txn_id_override
        if order_ref.startswith("sandbox_nets|m|"):
            return order_ref
        if self.config.is_sandbox:
            return self.config.sandbox_txn_id
        return f"sandbox_nets|m|{uuid.uuid4()}"

    def _create(self, amount: str, order_ref: str, return_context: dict) -> InitiateResult:
        body = {"txn_id": self._txn_id(order_ref), "amt_in_dollars": amount, "notify_mobile": 0}
        resp = self._request("POST", f"{self.config.base_url}{REQUEST_PATH}", json=body, headers=self._headers())
        qr = (resp.get("result") or {}).get("data") or {}

        if not (qr.get("response_code") == "00" and qr.get("txn_status") == 1 and qr.get("qr_code")):
            code = qr.get("response_code") or "N.A."
            log.error(f"[Payment NETS_QR {order_ref}] QR request refused: code={code} network_status={qr.get('network_status')} {qr.get('error_message')}")
            raise GatewayRequestError(self.gateway.value, str(code), qr.get("error_message") or "NETS QR request failed")

        payment_id = qr.get("txn_retrieval_ref") or qr.get("txn_id") or order_ref
        return InitiateResult(
            provider_payment_id=payment_id,
            embedded={
                "qr_image": f"data:image/png;base64,{qr['qr_code']}",
                "txn_retrieval_ref": payment_id,
                "network_status": qr.get("network_status"),
                "timer": QR_TIMER_SECONDS,
            },
            session_artifacts={"order_ref": order_ref},
        )

    def _check(self, provider_payment_id: str) -> Confirmation:
        stored = self.pending.get(provider_payment_id)
        if stored is not None and stored.is_terminal:
            return Confirmation(
                provider_payment_id=provider_payment_id,
                status=NormalizedStatus.from_pending_status(stored.status),
                payment_reference=provider_payment_id,
                raw=stored.raw_payload,
            )
        try:
            resp = self._request(
                "POST", f"{self.config.base_url}{QUERY_PATH}",
                json={"txn_retrieval_ref": provider_payment_id}, headers=self._headers(),
            )
        except GatewayRequestError as e:
            # the webhook may still arrive; keep waiting instead of failing the payment
            log.warning(f"[Payment NETS_QR {provider_payment_id}] status query failed ({e.code}), treating as pending")
            return Confirmation(provider_payment_id=provider_payment_id, status=NormalizedStatus.PENDING)

        data = (resp.get("result") or {}).get("data") or {}
        if _is_number(data.get("txn_status")):
            status = status_from_txn(data["txn_status"])
        elif isinstance(data.get("status"), str):
            status = status_from_word(data["status"])
        else:
            status = NormalizedStatus.PENDING
        return Confirmation(provider_payment_id=provider_payment_id, status=status,
                            payment_reference=provider_payment_id, raw=data)

    def handle_webhook(self, payload: dict) -> WebhookResult:
        """Parse a NETS push and record it; duplicate or late deliveries are absorbed by the store."""
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        event = payload.get("event") or payload.get("type")
        payment_id = (
            payload.get("paymentId")
            or data.get("id")
            or data.get("txn_retrieval_ref")
            or payload.get("txn_retrieval_ref")
        )

        status = None
        if event in SUCCESS_EVENTS:
            status = NormalizedStatus.SUCCEEDED
        elif event in FAILURE_EVENTS:
            status = NormalizedStatus.FAILED
        else:
            txn_status = payload.get("txn_status", data.get("txn_status"))
            raw_status = payload.get("status") or data.get("status")
            if _is_number(txn_status):
                status = status_from_txn(txn_status)
            elif isinstance(raw_status, str):
                status = status_from_word(raw_status)

        log.info(f"[Payment NETS_QR {payment_id}] webhook event={event} -> {status.value if status else None}")
        if payment_id and status is not None:
            self.pending.put(self.gateway.value, str(payment_id), status.as_pending_status(), payload)
        return WebhookResult(provider_payment_id=payment_id and str(payment_id), status=status)
