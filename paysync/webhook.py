"""
paysync/webhook.py

Splynx payment webhook processing:
- normalize the payload (JSON-API, {payment: ...} envelope or flat body)
- treat empty / tiny payloads as liveness probes
- deduplicate by transaction id (the unique index on payments is the real guard)
- store a pending record, post to UISP, then finalize the record
- resync the client in the background after a successful post
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from loguru import logger
from pydantic import BaseModel

from .database import PaymentStore
from .errors import DuplicatePaymentError, PersistenceError, ValidationError
from .models import PAYMENT_FAILED, PAYMENT_SUCCESS
from .sync import ClientSynchronizer
from .tasks import BackgroundWorker
from .uisp import UispClient

REQUIRED_FIELDS = ("client_id", "amount")
PROBE_MAX_KEYS = 3
TRANSACTION_PREFIX = "SPLYNX"


class PaymentRecord(BaseModel):
    transaction_id: str
    client_id: str
    amount: str
    currency_code: str = "KES"
    payment_type: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: str


@dataclass
class WebhookResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def extract_payment_data(body: Any) -> Dict[str, Any]:
    """Return a flat copy of the payment attributes, whatever the envelope."""
    if not isinstance(body, dict):
        return {}
    data = body.get("data")
    if isinstance(data, dict) and data.get("attributes"):
        attrs = data["attributes"]
    elif body.get("payment"):
        attrs = body["payment"]
    else:
        attrs = body
    return dict(attrs) if isinstance(attrs, dict) else {}


def apply_field_aliases(data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("customer_id") and not data.get("client_id"):
        data["client_id"] = data["customer_id"]
    return data


def missing_required_fields(data: Dict[str, Any]):
    return [f for f in REQUIRED_FIELDS if not data.get(f)]


def is_probe_payload(data: Dict[str, Any]) -> bool:
    """Incomplete payloads this small are monitoring pings, not payments."""
    return len(data) < PROBE_MAX_KEYS


def synthesize_transaction_id(client_id, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{TRANSACTION_PREFIX}-{now_ms}-{client_id}"


def build_payment_record(data: Dict[str, Any], default_currency: str = "KES") -> PaymentRecord:
    return PaymentRecord(
        transaction_id=str(data["transaction_id"]),
        client_id=str(data["client_id"]),
        amount=str(data["amount"]),
        currency_code=data.get("currency_code") or default_currency,
        payment_type=data.get("payment_type"),
        payment_method=data.get("payment_method") or data.get("payment_type"),
        created_at=str(data.get("created_at") or datetime.now(timezone.utc).isoformat()),
    )


class PaymentWebhookProcessor:
    def __init__(
        self,
        store: PaymentStore,
        uisp: UispClient,
        synchronizer: ClientSynchronizer,
        worker: BackgroundWorker,
        default_currency: str = "KES",
    ):
        self.store = store
        self.uisp = uisp
        self.synchronizer = synchronizer
        self.worker = worker
        self.default_currency = default_currency

    async def process(
        self,
        body: Any,
        headers: Optional[Dict[str, Any]] = None,
        source_ip: Optional[str] = None,
        validated: bool = False,
    ) -> WebhookResult:
        start = time.monotonic()
        await self.store.log_webhook(body, headers or {}, source_ip, validated)
        logger.info("Payment webhook received (validated={}, ip={})", validated, source_ip)

        data = extract_payment_data(body)
        if not data:
            logger.info("Webhook test/ping request received")
            return WebhookResult(200, {
                "success": True,
                "message": "Webhook endpoint is active and ready to receive payments",
            })

        apply_field_aliases(data)

        missing = missing_required_fields(data)
        if missing:
            logger.warning("Webhook with incomplete data: missing={} received={}", missing, list(data))
            if is_probe_payload(data):
                return WebhookResult(200, {
                    "success": True,
                    "message": "Webhook endpoint is active. Required fields for actual payments: "
                               + ", ".join(REQUIRED_FIELDS),
                })
            raise ValidationError("Missing required fields: " + ", ".join(missing), missing_fields=missing)

        if not data.get("transaction_id"):
            data["transaction_id"] = synthesize_transaction_id(data["client_id"])
        transaction_id = str(data["transaction_id"])

        existing = await self.store.get_payment_by_transaction_id(transaction_id)
        if existing:
            return self._already_processed(transaction_id, existing["status"])

        record = build_payment_record(data, self.default_currency)
        try:
            await self.store.insert_payment(record.model_dump())
        except DuplicatePaymentError:
            # lost the race against a concurrent delivery of the same transaction
            existing = await self.store.get_payment_by_transaction_id(transaction_id)
            if existing is None:
                logger.error("Payment {} rejected as duplicate but not found on re-read", transaction_id)
                raise PersistenceError("Failed to store payment")
            return self._already_processed(transaction_id, existing["status"])
        logger.info("Payment {} stored as pending", transaction_id)

        try:
            uisp_response = await self.uisp.post_payment(data)
        except Exception as e:
            await self.store.update_payment_status(transaction_id, PAYMENT_FAILED, None, str(e) or type(e).__name__)
            logger.error("Failed to post payment {} to UISP: {}", transaction_id, e)
            return WebhookResult(500, {
                "success": False,
                "error": "Failed to post payment to UISP",
                "transactionId": transaction_id,
                "message": str(e),
            })

        await self.store.update_payment_status(transaction_id, PAYMENT_SUCCESS, uisp_response, None)
        self.worker.submit(f"client-resync:{data['client_id']}", lambda: self.resync_client(data["client_id"]))

        duration = int((time.monotonic() - start) * 1000)
        logger.info("Payment {} successfully processed in {}ms", transaction_id, duration)
        uisp_id = uisp_response.get("id") if isinstance(uisp_response, dict) else None
        return WebhookResult(200, {
            "success": True,
            "message": "Payment successfully posted to UISP",
            "transactionId": transaction_id,
            "uispPaymentId": uisp_id,
            "duration": f"{duration}ms",
        })

    async def resync_client(self, client_id: Union[int, str]) -> None:
        cid = int(client_id)
        await self.synchronizer.sync_single_client(cid)
        await self.store.update_client_last_payment(cid)
        logger.info("Client {} synced after payment", cid)

    @staticmethod
    def _already_processed(transaction_id: str, status: str) -> WebhookResult:
        logger.warning("Payment {} already processed (status={})", transaction_id, status)
        return WebhookResult(200, {
            "success": True,
            "message": "Payment already processed",
            "transactionId": transaction_id,
            "status": status,
        })
