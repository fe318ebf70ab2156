"""Payment gateway webhook routes."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_db
from app.metrics import WEBHOOK_EVENTS
from app.services import billing as billing_service
from app.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook/mercadopago")
async def mercadopago_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    """Handle a Mercado Pago notification. No auth; the signature is verified."""
    gateway = get_payment_gateway()
    if not gateway.is_configured():
        raise HTTPException(status_code=503, detail="Payment gateway not configured")

    body = await request.body()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    data_id = (payload.get("data") or {}).get("id") or request.query_params.get("data.id")
    if data_id is not None:
        payload.setdefault("data", {})["id"] = str(data_id)
    signature = request.headers.get("x-signature", "")
    request_id = request.headers.get("x-request-id", "")
    if not gateway.validate_webhook_signature(signature, request_id, str(data_id or "")):
        WEBHOOK_EVENTS.labels("rejected").inc()
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    webhooks = billing_service.WebhookEvents(gateway)
    # Gateway reads retry with backoff; keep them off the event loop.
    result = await run_in_threadpool(webhooks.process_mercadopago, db, payload)
    WEBHOOK_EVENTS.labels(result["status"]).inc()
    return result
