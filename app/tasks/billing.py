import logging
from dataclasses import asdict

from app.celery_app import celery_app
from app.db import session_scope
from app.metrics import JOB_DURATION
from app.services.billing.invoice_cycle import run_invoice_cycle
from app.services.billing.payments import invoice_payments
from app.services.billing.repair import repair_fee_consistency
from app.services.billing.subscriptions import subscriptions
from app.services.scheduler_config import (
    EXPIRE_PREMIUM_TASK,
    GENERATE_INVOICES_TASK,
    POLL_PAYMENTS_TASK,
    REPAIR_FEES_TASK,
    RESOLVE_CARD_CHARGES_TASK,
)

logger = logging.getLogger(__name__)


@celery_app.task(name=GENERATE_INVOICES_TASK)
def generate_invoices() -> dict:
    result = run_invoice_cycle()
    payload = asdict(result)
    payload["invoice_ids"] = [str(invoice_id) for invoice_id in result.invoice_ids]
    return payload


@celery_app.task(name=REPAIR_FEES_TASK)
def repair_fees() -> dict:
    return repair_fee_consistency()


@celery_app.task(name=POLL_PAYMENTS_TASK)
def poll_pending_payments() -> dict:
    with JOB_DURATION.labels("poll_pending_payments").time():
        with session_scope() as db:
            result = invoice_payments.poll_pending(db)
    logger.info(
        "Polled %s pending payments, %s now paid",
        result["checked"],
        result["paid"],
        extra={"job": "poll_pending_payments"},
    )
    return result


@celery_app.task(name=RESOLVE_CARD_CHARGES_TASK)
def resolve_card_charges() -> dict:
    with JOB_DURATION.labels("resolve_card_charges").time():
        with session_scope() as db:
            result = subscriptions.resolve_card_charges(db)
    logger.info(
        "Followed up %s card charges, %s approved",
        result["checked"],
        result["approved"],
        extra={"job": "resolve_card_charges"},
    )
    return result


@celery_app.task(name=EXPIRE_PREMIUM_TASK)
def expire_lapsed_premium() -> dict:
    with JOB_DURATION.labels("expire_lapsed_premium").time():
        with session_scope() as db:
            return subscriptions.expire_lapsed_premium(db)
