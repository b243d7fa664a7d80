"""Security helpers: admin API key, webhook signatures, access logging"""
import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, Request

from app.core.config import settings
from app.core.logging import api_access_logger, security_logger


def get_client_ip(request: Request) -> str:
    """Best-effort client IP, honouring X-Forwarded-For from the reverse proxy"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def require_admin_key(request: Request) -> None:
    """Dependency: require the X-Admin-Key header to match ADMIN_API_KEY"""
    provided = request.headers.get("X-Admin-Key")
    expected = settings.ADMIN_API_KEY

    if not expected or not provided or not secrets.compare_digest(provided, expected):
        security_logger.warning(
            f"Admin API key rejected - IP: {get_client_ip(request)}, Path: {request.url.path}"
        )
        raise HTTPException(401, "Invalid or missing admin API key")


def compute_woocommerce_signature(body: bytes, secret: str) -> str:
    """WooCommerce signature: base64(HMAC-SHA256(secret, raw body))"""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_woocommerce_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """Verify a webhook delivery came from the store.

    Returns True when no secret is configured, so unsigned setups keep working.
    """
    secret = settings.WOOCOMMERCE_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        return True

    if not signature:
        security_logger.warning("WooCommerce webhook delivery without signature header")
        return False

    expected = compute_woocommerce_signature(body, secret)
    is_valid = hmac.compare_digest(expected, signature.strip())
    if not is_valid:
        security_logger.warning("WooCommerce webhook signature mismatch")
    return is_valid


def log_api_access(request: Request, status_code: int = 200, error: Optional[str] = None):
    """Log detailed API access information"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
