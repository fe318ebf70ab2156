import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import GatewayError
from app.models.billing import WebhookEvent, WebhookEventStatus
from app.models.types import utcnow
from app.services.billing.payments import InvoicePayments
from app.services.billing.subscriptions import Subscriptions
from app.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)

PROVIDER = "mercadopago"


def mercadopago_event_id(payload: dict[str, Any]) -> str:
    event_type = payload.get("type") or payload.get("topic") or "unknown"
    data_id = (payload.get("data") or {}).get("id")
    if payload.get("id"):
        return str(payload["id"])
    return f"{event_type}:{data_id}:{payload.get('action')}"


class WebhookEvents:
    def __init__(self, gateway=None) -> None:
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or get_payment_gateway()

    @staticmethod
    def record(
        db: Session,
        provider: str,
        event_type: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> WebhookEvent | None:
        """Store an incoming event; returns None for an already-handled delivery.

        A previously failed event is handed back so it can be retried.
        """
        existing = (
            db.query(WebhookEvent)
            .filter(WebhookEvent.event_id == event_id)
            .first()
        )
        if existing is not None:
            if existing.status == WebhookEventStatus.failed:
                return existing
            logger.info("Ignoring duplicate webhook event %s", event_id)
            return None
        item = WebhookEvent(
            provider=provider,
            event_type=event_type,
            event_id=event_id,
            payload=payload,
            status=WebhookEventStatus.pending,
        )
        db.add(item)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Ignoring concurrent duplicate webhook event %s", event_id)
            return None
        db.refresh(item)
        logger.info("Created WebhookEvent: %s", item.id)
        return item

    def process_mercadopago(
        self, db: Session, payload: dict[str, Any], now: datetime | None = None
    ) -> dict[str, str]:
        """Route a Mercado Pago notification to invoice or subscription handling.

        The notification only names a payment; its status is always fetched
        from the gateway.
        """
        now = now or utcnow()
        event_type = str(payload.get("type") or payload.get("topic") or "unknown")
        data_id = (payload.get("data") or {}).get("id")
        item = self.record(db, PROVIDER, event_type, mercadopago_event_id(payload), payload)
        if item is None:
            return {"status": "duplicate"}

        if event_type != "payment" or not data_id:
            return self._finish(db, item, WebhookEventStatus.ignored, now)

        invoice_payments = InvoicePayments(self._gateway)
        subscriptions = Subscriptions(self._gateway)
        try:
            invoice = invoice_payments.reconcile_notification(db, str(data_id), now)
            if invoice is not None:
                logger.info(
                    "Webhook reconciled invoice payment %s",
                    data_id,
                    extra={"invoice_id": invoice.id},
                )
                return self._finish(db, item, WebhookEventStatus.processed, now)
            payment = self.gateway.get_payment(str(data_id))
            if not Subscriptions.is_subscription_event(payment):
                return self._finish(db, item, WebhookEventStatus.ignored, now)
            subscriptions.handle_payment_event(db, payment, now)
        except GatewayError as exc:
            db.rollback()
            item.status = WebhookEventStatus.failed
            item.error_message = exc.message
            db.commit()
            raise
        return self._finish(db, item, WebhookEventStatus.processed, now)

    @staticmethod
    def _finish(
        db: Session, item: WebhookEvent, status: WebhookEventStatus, now: datetime
    ) -> dict[str, str]:
        item.status = status
        item.error_message = None
        item.processed_at = now
        db.commit()
        return {"status": status.value}


webhook_events = WebhookEvents()
