import hashlib
import hmac
from typing import Optional

from fastapi import Request
from loguru import logger

from .errors import AuthenticationError


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), msg=payload, digestmod=hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    # Splynx sends HMAC-SHA256 over the raw body, hex encoded
    if not secret or not signature:
        return False
    signature = signature.strip()
    if signature.lower().startswith("sha256="):
        signature = signature[7:]
    if not signature.isascii():
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature.lower())


class WebhookSignatureValidator:
    """FastAPI dependency that rejects unsigned or badly signed webhooks."""

    def __init__(self, secret: Optional[str], header_name: str = "X-Splynx-Signature", allow_unsigned: bool = False):
        self.secret = secret
        self.header_name = header_name
        self.allow_unsigned = allow_unsigned

    async def __call__(self, request: Request) -> bool:
        if not self.secret:
            if self.allow_unsigned:
                logger.warning("Webhook secret not configured, accepting unsigned request")
                request.state.webhook_validated = False
                return False
            logger.error("Webhook secret not configured, rejecting request")
            raise AuthenticationError("Webhook signature validation is not configured")

        raw = await request.body()
        sig = request.headers.get(self.header_name, "")
        if not verify_signature(raw, sig, self.secret):
            logger.warning("Invalid webhook signature from {}", request.client.host if request.client else "unknown")
            raise AuthenticationError("Missing or invalid webhook signature")
        request.state.webhook_validated = True
        return True
