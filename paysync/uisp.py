import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from .config import Settings
from .errors import ExternalServiceError, NotFoundError


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("errors") or data)[:200]
    return str(data)[:200]


def build_payment_body(payment_data: Dict[str, Any], method_id: Optional[str], default_currency: str = "KES") -> Dict[str, Any]:
    """Map normalized Splynx payment attributes onto a UISP CRM payment."""
    transaction_id = payment_data.get("transaction_id")
    body = {
        "clientId": int(payment_data["client_id"]),
        "amount": float(payment_data["amount"]),
        "currencyCode": payment_data.get("currency_code") or default_currency,
        "note": payment_data.get("comment") or f"Splynx payment {transaction_id}",
        "providerName": "Splynx",
        "providerPaymentId": str(transaction_id),
        "applyToInvoicesAutomatically": True,
        "createdDate": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S%z"),
    }
    if method_id:
        body["methodId"] = method_id
    return body


class UispClient:
    """Thin async wrapper over the UISP CRM REST API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.uisp_api_url.rstrip("/")
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Auth-App-Key": self.settings.uisp_app_key or "",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.settings.uisp_timeout, transport=self._transport) as client:
                r = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error("UISP {} {} failed: {}", method, path, e)
            raise ExternalServiceError(f"UISP request failed: {e}")

        if r.status_code == 404:
            raise NotFoundError(f"UISP resource not found: {path}", error="Not found in UISP")
        if r.status_code >= 400:
            detail = _error_detail(r)
            logger.error("UISP {} {} returned {}: {}", method, path, r.status_code, detail)
            raise ExternalServiceError(f"UISP API error {r.status_code}: {detail}", status=r.status_code, detail=detail)
        if not r.content:
            return None
        try:
            return r.json()
        except json.JSONDecodeError:
            raise ExternalServiceError("UISP returned a non-JSON response", status=r.status_code)

    async def post_payment(self, payment_data: Dict[str, Any]) -> Dict[str, Any]:
        body = build_payment_body(payment_data, self.settings.uisp_payment_method_id, self.settings.default_currency)
        logger.info("Posting payment {} to UISP for client {}", body["providerPaymentId"], body["clientId"])
        return await self._request("POST", "/payments", json=body)

    async def get_client(self, client_id) -> Dict[str, Any]:
        return await self._request("GET", f"/clients/{client_id}")

    async def get_client_payments(self, client_id) -> List[Dict[str, Any]]:
        return await self._request("GET", "/payments", params={"clientId": client_id}) or []

    async def list_clients(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        return await self._request("GET", "/clients", params={"limit": limit, "offset": offset}) or []
