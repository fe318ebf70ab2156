from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models.billing import AppFee
from app.schemas.billing import AppFeeCreate, AppFeeUpdate
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_partner,
    validate_payload,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

_NOT_NULL_FIELDS = {
    "order_id",
    "store_id",
    "customer_id",
    "payment_method",
    "order_date",
    "completed_at",
    "app_fee",
}


def _apply_fee_value(fee: AppFee, app_fee: dict[str, Any]) -> None:
    fee.fee_percentage = app_fee["percentage"]
    fee.fee_value = app_fee["value"]
    fee.is_premium_rate = app_fee["is_premium_rate"]


class AppFees(ListResponseMixin):
    @staticmethod
    def create(db: Session, partner_id: str, data: AppFeeCreate | dict) -> AppFee:
        """Record one platform fee for a completed order.

        The entry starts unsettled and unattached to any invoice; the invoice
        cycle is the only writer that changes that.
        """
        partner = get_partner(db, partner_id)
        payload = validate_payload(AppFeeCreate, data)
        fee = AppFee(
            partner_id=partner.id,
            settled=False,
            invoice_id=None,
            **payload.model_dump(exclude={"app_fee"}),
        )
        _apply_fee_value(fee, payload.app_fee.model_dump())
        db.add(fee)
        db.commit()
        db.refresh(fee)
        logger.info("Created AppFee: %s", fee.id, extra={"partner_id": partner.id})
        return fee

    @staticmethod
    def get(db: Session, partner_id: str, fee_id: str) -> AppFee:
        fee = db.get(AppFee, coerce_uuid(fee_id))
        if not fee or fee.partner_id != coerce_uuid(partner_id):
            raise NotFoundError("App fee not found")
        return fee

    @staticmethod
    def update(
        db: Session, partner_id: str, fee_id: str, patch: AppFeeUpdate | dict
    ) -> AppFee:
        fee = AppFees.get(db, partner_id, fee_id)
        if fee.settled or fee.invoice_id is not None:
            raise ValidationError("Settled fees cannot be modified")
        payload = validate_payload(AppFeeUpdate, patch)
        changes = payload.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if value is None and key in _NOT_NULL_FIELDS:
                raise ValidationError(f"{key} cannot be null")
            if key == "app_fee":
                _apply_fee_value(fee, value)
            else:
                setattr(fee, key, value)
        db.commit()
        db.refresh(fee)
        logger.info("Updated %s: %s", AppFee.__name__, fee.id)
        return fee

    @staticmethod
    def list(
        db: Session,
        partner_id: str,
        settled: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> tuple[list[AppFee], int]:
        get_partner(db, partner_id)
        query = db.query(AppFee).filter(AppFee.partner_id == coerce_uuid(partner_id))
        if settled is not None:
            query = query.filter(AppFee.settled.is_(settled))
        total = query.count()
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "order_date": AppFee.order_date,
                "completed_at": AppFee.completed_at,
                "created_at": AppFee.created_at,
            },
        )
        items = list(apply_pagination(query, limit, offset).all())
        return items, total

    @staticmethod
    def unsettled(db: Session, partner_id: str) -> list[AppFee]:
        return (
            db.query(AppFee)
            .filter(AppFee.partner_id == coerce_uuid(partner_id))
            .filter(AppFee.settled.is_(False))
            .order_by(AppFee.completed_at.desc())
            .all()
        )

    @staticmethod
    def recent(db: Session, partner_id: str, count: int = 10) -> list[AppFee]:
        return (
            db.query(AppFee)
            .filter(AppFee.partner_id == coerce_uuid(partner_id))
            .order_by(AppFee.completed_at.desc())
            .limit(count)
            .all()
        )

    @staticmethod
    def by_period(
        db: Session, partner_id: str, start: datetime, end: datetime
    ) -> list[AppFee]:
        if start > end:
            raise ValidationError("start must not be after end")
        return (
            db.query(AppFee)
            .filter(AppFee.partner_id == coerce_uuid(partner_id))
            .filter(AppFee.completed_at >= start)
            .filter(AppFee.completed_at <= end)
            .order_by(AppFee.completed_at.desc())
            .all()
        )

    @staticmethod
    def summary(
        db: Session, partner_id: str, start: datetime, end: datetime
    ) -> dict[str, Any]:
        get_partner(db, partner_id)
        fees = AppFees.by_period(db, partner_id, start, end)
        total_base_value = sum(fee.order_base_value for fee in fees)
        weighted = sum(fee.fee_percentage * fee.order_base_value for fee in fees)
        return {
            "total_orders": len(fees),
            "total_base_value": total_base_value,
            "total_orders_value": sum(fee.order_total_price for fee in fees),
            "total_fees": sum(fee.fee_value for fee in fees),
            "average_fee_percentage": (
                weighted / total_base_value if total_base_value > 0 else 0.0
            ),
            "start_date": start,
            "end_date": end,
        }


app_fees = AppFees()
