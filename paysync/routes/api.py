"""
paysync/routes/api.py

Read/query endpoints over stored payments and clients, plus UISP client sync
triggers.
"""

import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request
from loguru import logger

from ..errors import NotFoundError

router = APIRouter()

STARTED_AT = time.monotonic()


def _int_param(value: Optional[str], default: int) -> int:
    try:
        n = int(value) if value is not None else 0
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _offset_param(value: Optional[str]) -> int:
    try:
        n = int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0
    return max(n, 0)


def _bool_param(value: str) -> bool:
    return value.lower() in ("true", "1")


@router.get("/payments")
async def list_payments(request: Request, limit: Optional[str] = None, offset: Optional[str] = None):
    limit_n = _int_param(limit, 50)
    offset_n = _offset_param(offset)
    payments = await request.app.state.store.get_all_payments(limit_n, offset_n)
    return {
        "success": True,
        "data": payments,
        "pagination": {"limit": limit_n, "offset": offset_n, "count": len(payments)},
    }


@router.get("/payments/{transaction_id}")
async def get_payment(request: Request, transaction_id: str):
    payment = await request.app.state.store.get_payment_by_transaction_id(transaction_id)
    if not payment:
        raise NotFoundError(f"No payment with transaction id {transaction_id}", error="Payment not found")
    return {"success": True, "data": payment}


@router.get("/stats")
async def payment_stats(request: Request):
    stats = await request.app.state.store.get_payment_stats()
    return {"success": True, "data": stats}


@router.head("/health")
@router.get("/health")
async def health():
    return {
        "success": True,
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
    }


# ========== CLIENT ENDPOINTS ==========
# fixed paths first, /clients/{client_id} would swallow them otherwise

@router.get("/clients/stats")
async def client_stats(request: Request):
    stats = await request.app.state.store.get_client_stats()
    return {"success": True, "data": stats}


@router.get("/clients")
async def list_clients(
    request: Request,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[str] = None,
    is_suspended: Optional[str] = None,
):
    store = request.app.state.store
    limit_n = _int_param(limit, 100)
    offset_n = _offset_param(offset)

    if search:
        clients = await store.search_clients(search, limit=limit_n)
    else:
        filters = {}
        if is_active is not None:
            filters["is_active"] = _bool_param(is_active)
        if is_suspended is not None:
            filters["is_suspended"] = _bool_param(is_suspended)
        clients = await store.get_all_clients(limit_n, offset_n, filters)

    return {
        "success": True,
        "data": clients,
        "pagination": {"limit": limit_n, "offset": offset_n, "count": len(clients)},
    }


@router.post("/clients/sync")
async def sync_clients(request: Request):
    logger.info("Client sync requested")
    request.app.state.worker.submit("full-client-sync", request.app.state.synchronizer.sync_all_clients)
    return {
        "success": True,
        "message": "Client sync started in background",
        "status": "in_progress",
    }


@router.post("/clients/sync/wait")
async def sync_clients_wait(request: Request):
    logger.info("Synchronous client sync requested")
    result = await request.app.state.synchronizer.sync_all_clients()
    return {"success": True, "message": "Client sync completed", "data": result}


@router.get("/clients/{client_id}/payments")
async def client_payments(request: Request, client_id: str):
    payments = await request.app.state.store.get_payments_by_client_id(client_id)
    return {"success": True, "data": payments, "count": len(payments)}


@router.get("/clients/{client_id}/uisp-payments")
async def client_uisp_payments(request: Request, client_id: int):
    payments = await request.app.state.uisp.get_client_payments(client_id)
    return {"success": True, "data": payments}


@router.get("/clients/{client_id}")
async def get_client(request: Request, client_id: int):
    data = await request.app.state.uisp.get_client(client_id)
    return {"success": True, "data": data}


@router.post("/clients/{client_id}/sync")
async def sync_client(request: Request, client_id: int):
    data = await request.app.state.synchronizer.sync_single_client(client_id)
    return {"success": True, "message": "Client synced successfully", "data": data}


@router.get("/sync/logs")
async def sync_logs(request: Request, limit: Optional[str] = None):
    logs = await request.app.state.store.get_recent_sync_logs(_int_param(limit, 10))
    return {"success": True, "data": logs}
