from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models.billing import Invoice, InvoiceCharge, PaymentStatus
from app.models.types import utcnow
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_partner,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class Invoices(ListResponseMixin):
    @staticmethod
    def get(db: Session, partner_id: str, invoice_id: str) -> Invoice:
        invoice = db.get(Invoice, coerce_uuid(invoice_id))
        if not invoice or invoice.partner_id != coerce_uuid(partner_id):
            raise NotFoundError("Invoice not found")
        return invoice

    @staticmethod
    def get_by_payment_id(db: Session, payment_id: str) -> Invoice | None:
        """Find the invoice behind any charge it was issued, not only the latest."""
        charge = (
            db.query(InvoiceCharge)
            .filter(InvoiceCharge.payment_id == str(payment_id))
            .first()
        )
        if charge is not None:
            return charge.invoice
        return db.query(Invoice).filter(Invoice.payment_id == str(payment_id)).first()

    @staticmethod
    def list(
        db: Session,
        partner_id: str,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
        now: datetime | None = None,
    ) -> tuple[list[Invoice], int]:
        get_partner(db, partner_id)
        now = now or utcnow()
        query = db.query(Invoice).filter(Invoice.partner_id == coerce_uuid(partner_id))
        if status == PaymentStatus.paid.value:
            query = query.filter(Invoice.payment_status == PaymentStatus.paid)
        elif status == PaymentStatus.overdue.value:
            query = query.filter(Invoice.payment_status == PaymentStatus.pending).filter(
                Invoice.due_date < now
            )
        elif status == PaymentStatus.pending.value:
            query = query.filter(Invoice.payment_status == PaymentStatus.pending).filter(
                Invoice.due_date >= now
            )
        elif status:
            raise ValidationError("Invalid status. Allowed: overdue, paid, pending")
        total = query.count()
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Invoice.created_at,
                "due_date": Invoice.due_date,
                "total_amount": Invoice.total_amount,
            },
        )
        items = list(apply_pagination(query, limit, offset).all())
        return items, total

    @staticmethod
    def for_partner(db: Session, partner_id) -> list[Invoice]:
        return (
            db.query(Invoice)
            .filter(Invoice.partner_id == coerce_uuid(partner_id))
            .order_by(Invoice.due_date.asc())
            .all()
        )


invoices = Invoices()
