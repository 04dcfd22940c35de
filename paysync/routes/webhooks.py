"""
paysync/routes/webhooks.py

Splynx payment webhook endpoints.
"""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..errors import ValidationError

router = APIRouter()


async def require_signature(request: Request):
    return await request.app.state.signature_validator(request)


@router.post("/payment")
async def payment_webhook(request: Request, validated: bool = Depends(require_signature)):
    raw = await request.body()
    try:
        body = json.loads(raw) if raw.strip() else {}
    except ValueError:
        raise ValidationError("Request body is not valid JSON", error="Invalid JSON")

    processor = request.app.state.processor
    result = await processor.process(
        body,
        headers=dict(request.headers),
        source_ip=request.client.host if request.client else None,
        validated=getattr(request.state, "webhook_validated", validated),
    )
    return JSONResponse(result.body, status_code=result.status_code)


@router.get("/test")
async def webhook_test():
    return {
        "success": True,
        "message": "Webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
