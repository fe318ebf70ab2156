from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.metrics import CREDITS_APPLIED
from app.models.billing import Credit, CreditStatus
from app.models.types import utcnow
from app.schemas.billing import CreditCreate
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_partner,
    validate_enum,
    validate_payload,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class Credits(ListResponseMixin):
    @staticmethod
    def create(db: Session, partner_id: str, data: CreditCreate | dict) -> Credit:
        partner = get_partner(db, partner_id)
        payload = validate_payload(CreditCreate, data)
        credit = Credit(
            partner_id=partner.id,
            status=CreditStatus.pending,
            **payload.model_dump(),
        )
        db.add(credit)
        db.commit()
        db.refresh(credit)
        logger.info("Created Credit: %s", credit.id, extra={"partner_id": partner.id})
        return credit

    @staticmethod
    def get(db: Session, partner_id: str, credit_id: str) -> Credit:
        credit = db.get(Credit, coerce_uuid(credit_id))
        if not credit or credit.partner_id != coerce_uuid(partner_id):
            raise NotFoundError("Credit not found")
        return credit

    @staticmethod
    def list(
        db: Session,
        partner_id: str,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> tuple[list[Credit], int]:
        get_partner(db, partner_id)
        query = db.query(Credit).filter(Credit.partner_id == coerce_uuid(partner_id))
        if status:
            query = query.filter(
                Credit.status == validate_enum(status, CreditStatus, "status")
            )
        total = query.count()
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Credit.created_at, "value": Credit.value},
        )
        items = list(apply_pagination(query, limit, offset).all())
        return items, total

    @staticmethod
    def available(db: Session, partner_id: str) -> list[Credit]:
        """Pending credits, oldest first. This order is the consumption order."""
        return (
            db.query(Credit)
            .filter(Credit.partner_id == coerce_uuid(partner_id))
            .filter(Credit.status == CreditStatus.pending)
            .order_by(Credit.created_at.asc(), Credit.id.asc())
            .with_for_update()
            .all()
        )

    @staticmethod
    def summary(db: Session, partner_id: str) -> dict[str, int]:
        get_partner(db, partner_id)
        credits = (
            db.query(Credit).filter(Credit.partner_id == coerce_uuid(partner_id)).all()
        )
        pending = [c for c in credits if c.status == CreditStatus.pending]
        applied = [c for c in credits if c.status == CreditStatus.applied]
        return {
            "total_credits": sum(c.value for c in credits),
            "available_credits": sum(c.value for c in pending),
            "applied_credits": sum(c.value for c in applied),
            "pending": len(pending),
            "applied": len(applied),
        }

    @staticmethod
    def expire(db: Session, partner_id: str, credit_id: str) -> Credit:
        credit = Credits.get(db, partner_id, credit_id)
        if credit.status != CreditStatus.pending:
            raise ValidationError(
                f"Only pending credits can expire (credit is {credit.status.value})"
            )
        credit.status = CreditStatus.expired
        db.commit()
        db.refresh(credit)
        logger.info("Expired Credit: %s", credit.id, extra={"partner_id": partner_id})
        return credit

    @staticmethod
    def apply_to_invoice(
        db: Session,
        partner_id: str,
        invoice_id: str,
        invoice_amount: int,
        *,
        commit: bool = True,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Consume pending credits against an invoice amount, oldest first.

        A credit larger than what is still owed is split: the consumed part
        keeps the original row (now ``applied``) and the leftover becomes a
        new pending credit with the original ``created_at``, so it keeps its
        place in the queue. With ``commit=False`` the writes join the
        caller's transaction instead of committing here.
        """
        if invoice_amount < 0:
            raise ValidationError("invoice_amount must not be negative")
        now = now or utcnow()
        invoice_uuid = coerce_uuid(invoice_id)
        remaining = invoice_amount
        applied: list[dict[str, Any]] = []
        try:
            for credit in Credits.available(db, partner_id):
                if remaining <= 0:
                    break
                original_value = credit.value
                consumed = min(original_value, remaining)
                if consumed < original_value:
                    db.add(
                        Credit(
                            partner_id=credit.partner_id,
                            order_id=credit.order_id,
                            store_id=credit.store_id,
                            coupon_code=credit.coupon_code,
                            coupon_is_global=credit.coupon_is_global,
                            value=original_value - consumed,
                            status=CreditStatus.pending,
                            created_at=credit.created_at,
                        )
                    )
                    credit.value = consumed
                credit.status = CreditStatus.applied
                credit.applied_at = now
                credit.invoice_id = invoice_uuid
                remaining -= consumed
                applied.append(
                    {
                        "credit_id": str(credit.id),
                        "coupon_code": credit.coupon_code,
                        "original_value": original_value,
                        "applied_value": consumed,
                    }
                )
            if commit:
                db.commit()
            else:
                db.flush()
        except Exception:
            if commit:
                db.rollback()
            raise

        applied_amount = invoice_amount - remaining
        if applied_amount:
            if commit:
                CREDITS_APPLIED.inc(applied_amount)
            logger.info(
                "Applied %s centavos of credit to invoice %s",
                applied_amount,
                invoice_uuid,
                extra={"partner_id": partner_id, "invoice_id": invoice_uuid},
            )
        return {
            "applied_amount": applied_amount,
            "remaining_amount": remaining,
            "applied_credits": applied,
        }


credits = Credits()
