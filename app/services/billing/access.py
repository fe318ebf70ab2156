"""Access blocking for unpaid invoices.

``evaluate_access_block`` is the single source of truth: the trusted
block-check endpoint and the websocket push both call it, and anything a
client computes on its own is for display only.

Every committed insert, update or delete of an invoice triggers a full
recomputation for that partner and a push to its subscribers, which costs
O(current invoice count) per change.
"""

import asyncio
import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session, object_session

from app.config import settings
from app.db import SessionLocal
from app.models.billing import Invoice, PaymentStatus
from app.models.types import utcnow
from app.schemas.billing import AccessBlockStatus
from app.services.billing.invoices import invoices
from app.services.common import get_partner
from app.services.websocket_manager import ws_manager

logger = logging.getLogger(__name__)

_DIRTY_PARTNERS_KEY = "access_block_dirty_partners"


def evaluate_access_block(
    partner_invoices: Iterable[Any], now: datetime | None = None
) -> dict[str, Any]:
    now = now or utcnow()
    grace_days = settings.access_grace_days
    suspension_days = settings.access_suspension_days

    worst = None
    days_past_due = 0
    for invoice in partner_invoices:
        if invoice.payment_status == PaymentStatus.paid:
            continue
        if invoice.due_date >= now:
            continue
        days = (now - invoice.due_date) // timedelta(days=1)
        if worst is None or days > days_past_due:
            worst = invoice
            days_past_due = days

    if worst is None:
        return {
            "has_overdue_invoice": False,
            "overdue_invoice": None,
            "days_past_due": 0,
            "is_blocked": False,
            "blocking_message": None,
            "severity": "none",
        }

    if days_past_due >= suspension_days:
        severity = "suspended"
        message = (
            f"Your account is suspended: an invoice is {days_past_due} days overdue. "
            "Pay the outstanding invoice to restore access."
        )
    elif days_past_due >= grace_days:
        severity = "blocked"
        message = (
            f"Access blocked: an invoice is {days_past_due} days overdue. "
            "Pay it to unblock your store."
        )
    else:
        severity = "warning"
        message = (
            f"You have an invoice {days_past_due} days overdue. Access is blocked "
            f"after {grace_days} days."
        )
    return {
        "has_overdue_invoice": True,
        "overdue_invoice": {
            "id": worst.id,
            "due_date": worst.due_date,
            "total_amount": worst.total_amount,
        },
        "days_past_due": days_past_due,
        "is_blocked": days_past_due > grace_days,
        "blocking_message": message,
        "severity": severity,
    }


def access_block_for_partner(
    db: Session, partner_id, now: datetime | None = None
) -> dict[str, Any]:
    get_partner(db, partner_id)
    return evaluate_access_block(invoices.for_partner(db, partner_id), now)


# ── Push feed ────────────────────────────────────────────


def _compute_payload(partner_id: uuid.UUID, session_factory=None) -> dict[str, Any]:
    session = (session_factory or SessionLocal)()
    try:
        status = access_block_for_partner(session, partner_id)
    finally:
        session.close()
    return {
        "type": "access_block",
        "data": AccessBlockStatus(**status).model_dump(mode="json"),
    }


async def push_access_status(partner_id: uuid.UUID, session_factory=None) -> None:
    payload = await asyncio.to_thread(_compute_payload, partner_id, session_factory)
    await ws_manager.send_to_partner(partner_id, payload)


def notify_partner(partner_id: uuid.UUID) -> bool:
    if not ws_manager.get_connection_count(partner_id):
        return False
    return ws_manager.submit(push_access_status(partner_id))


@event.listens_for(Invoice, "after_insert")
@event.listens_for(Invoice, "after_update")
@event.listens_for(Invoice, "after_delete")
def _mark_partner_dirty(mapper, connection, target: Invoice) -> None:
    session = object_session(target)
    if session is not None:
        session.info.setdefault(_DIRTY_PARTNERS_KEY, set()).add(target.partner_id)


@event.listens_for(Session, "after_commit")
def _push_committed_changes(session: Session) -> None:
    for partner_id in session.info.pop(_DIRTY_PARTNERS_KEY, ()):
        try:
            notify_partner(partner_id)
        except Exception:
            logger.exception(
                "Access block push failed", extra={"partner_id": partner_id}
            )


@event.listens_for(Session, "after_soft_rollback")
def _drop_rolled_back_changes(session: Session, previous_transaction) -> None:
    if previous_transaction.parent is None:
        session.info.pop(_DIRTY_PARTNERS_KEY, None)
