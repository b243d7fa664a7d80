"""Inbound webhook routes"""
import logging
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import WC_SIGNATURE_HEADER, WC_SOURCE_HEADER, WC_TOPIC_HEADER
from app.core.logging import webhook_logger
from app.core.security import get_client_ip, verify_woocommerce_signature
from app.db.repository import SqlAlchemyIngestionRepository
from app.db.session import get_db
from app.services.ingestion_service import OrderIngestionPipeline, WebhookProcessingError

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

# The store calls from its own origin, so every response allows any origin
WEBHOOK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        f"Content-Type, Authorization, {WC_SOURCE_HEADER}, {WC_TOPIC_HEADER}, {WC_SIGNATURE_HEADER}"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@router.options("/woocommerce")
def woocommerce_webhook_preflight():
    """CORS preflight"""
    return Response(status_code=200, headers=WEBHOOK_CORS_HEADERS)


@router.post("/woocommerce")
async def woocommerce_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle WooCommerce order.created / order.updated deliveries

    The body is read raw: the signature is computed over the exact bytes and
    the store may send JSON or URL-encoded form data.
    """
    payload = await request.body()

    if not verify_woocommerce_signature(payload, request.headers.get(WC_SIGNATURE_HEADER)):
        webhook_logger.warning(f"Rejected unsigned or mis-signed delivery from {get_client_ip(request)}")
        return JSONResponse(
            status_code=401,
            content={"success": False, "error": "Invalid webhook signature"},
            headers=WEBHOOK_CORS_HEADERS
        )

    pipeline = OrderIngestionPipeline(SqlAlchemyIngestionRepository(db))

    try:
        outcome = pipeline.process(
            payload,
            topic=request.headers.get(WC_TOPIC_HEADER),
            source=request.headers.get(WC_SOURCE_HEADER)
        )
    except WebhookProcessingError as e:
        logger.error(f"WooCommerce webhook failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e)},
            headers=WEBHOOK_CORS_HEADERS
        )
    except Exception as e:
        logger.error(f"Unexpected error processing WooCommerce webhook: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
            headers=WEBHOOK_CORS_HEADERS
        )

    if outcome is None:
        return JSONResponse(
            status_code=200,
            content={"success": True, "message": "Webhook ping acknowledged"},
            headers=WEBHOOK_CORS_HEADERS
        )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "Order synced successfully",
            "orderId": outcome.order_id,
            "customerId": outcome.customer_id,
        },
        headers=WEBHOOK_CORS_HEADERS
    )
