"""
paysync/sync.py

Pull client records from UISP into the local clients table.
"""

import json
import time
from typing import Any, Dict, Optional

from loguru import logger

from .database import PaymentStore
from .errors import PaySyncError
from .models import utcnow
from .uisp import UispClient

MAX_SYNC_PAGES = 10000


def _float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def map_uisp_client(data: Dict[str, Any]) -> Dict[str, Any]:
    """UISP client JSON -> clients row."""
    contacts = data.get("contacts") or []
    contact = contacts[0] if contacts else {}
    return {
        "id": int(data["id"]),
        "user_ident": data.get("userIdent"),
        "first_name": data.get("firstName"),
        "last_name": data.get("lastName"),
        "company_name": data.get("companyName"),
        "email": contact.get("email"),
        "phone": contact.get("phone"),
        "street1": data.get("street1"),
        "city": data.get("city"),
        "zip_code": data.get("zipCode"),
        "is_active": bool(data.get("isActive", True)),
        "is_suspended": bool(data.get("hasSuspendedService", False)),
        "account_balance": _float(data.get("accountBalance")),
        "account_outstanding": _float(data.get("accountOutstanding")),
        "account_credit": _float(data.get("accountCredit")),
        "currency_code": data.get("currencyCode"),
        "raw_data": json.dumps(data, default=str),
    }


class ClientSynchronizer:
    def __init__(self, store: PaymentStore, uisp: UispClient, page_size: int = 100, max_pages: int = MAX_SYNC_PAGES):
        self.store = store
        self.uisp = uisp
        self.page_size = max(1, page_size)
        self.max_pages = max(1, max_pages)

    async def sync_single_client(self, client_id: int) -> Dict[str, Any]:
        started = utcnow()
        t0 = time.monotonic()
        try:
            data = await self.uisp.get_client(client_id)
            row = await self.store.upsert_client(map_uisp_client(data))
        except Exception as e:
            await self._record("single", "failed", started, t0, total=1, failed=1, error=str(e))
            raise
        await self._record("single", "success", started, t0, total=1, synced=1)
        logger.info("Client {} synced from UISP", client_id)
        return row

    async def sync_all_clients(self) -> Dict[str, Any]:
        started = utcnow()
        t0 = time.monotonic()
        total = synced = failed = 0
        offset = 0
        previous_ids = None
        stopped_early = False
        logger.info("Full client sync started")
        try:
            for _ in range(self.max_pages):
                page = await self.uisp.list_clients(limit=self.page_size, offset=offset)
                page_ids = [data.get("id") for data in page]
                if page and page_ids == previous_ids:
                    # UISP ignored the offset and served the same page again
                    logger.warning("UISP returned the same clients at offset {}, stopping sync", offset)
                    stopped_early = True
                    break
                previous_ids = page_ids
                for data in page:
                    total += 1
                    try:
                        await self.store.upsert_client(map_uisp_client(data))
                        synced += 1
                    except (PaySyncError, KeyError, ValueError) as e:
                        failed += 1
                        logger.warning("Failed to sync client {}: {}", data.get("id"), e)
                if len(page) < self.page_size:
                    break
                offset += self.page_size
            else:
                logger.warning("Full client sync stopped after {} pages", self.max_pages)
                stopped_early = True
        except Exception as e:
            await self._record("full", "failed", started, t0, total, synced, failed, error=str(e))
            logger.error("Full client sync failed after {} clients: {}", total, e)
            raise

        status = "success" if failed == 0 and not stopped_early else "partial"
        log = await self._record("full", status, started, t0, total, synced, failed)
        summary = {
            "total": total,
            "synced": synced,
            "failed": failed,
            "status": status,
            "durationMs": log["duration_ms"],
        }
        logger.info("Full client sync finished: {}", summary)
        return summary

    async def _record(self, sync_type: str, status: str, started, t0: float,
                      total: int = 0, synced: int = 0, failed: int = 0,
                      error: Optional[str] = None) -> Dict[str, Any]:
        return await self.store.log_sync(
            sync_type=sync_type,
            status=status,
            total_clients=total,
            synced_clients=synced,
            failed_clients=failed,
            error_message=error,
            duration_ms=int((time.monotonic() - t0) * 1000),
            started_at=started,
        )
