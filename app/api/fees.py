from datetime import datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_partner_access
from app.models.types import utcnow
from app.schemas.billing import AppFeeCreate, AppFeeRead, AppFeeUpdate, FeeSummary
from app.schemas.common import ListResponse
from app.services import billing as billing_service

router = APIRouter(
    prefix="/partners/{partner_id}/app-fees",
    tags=["app-fees"],
    dependencies=[Depends(require_partner_access)],
)


@router.post("", response_model=AppFeeRead, status_code=status.HTTP_201_CREATED)
def create_fee(partner_id: UUID, payload: AppFeeCreate, db: Session = Depends(get_db)):
    return billing_service.app_fees.create(db, partner_id, payload)


@router.get("/summary", response_model=FeeSummary)
def fee_summary(
    partner_id: UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    db: Session = Depends(get_db),
):
    end = end or utcnow()
    start = start or end - timedelta(days=30)
    return billing_service.app_fees.summary(db, partner_id, start, end)


@router.get("", response_model=ListResponse[AppFeeRead])
def list_fees(
    partner_id: UUID,
    settled: bool | None = None,
    order_by: str = Query(default="order_date"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.app_fees.list_response(
        db, partner_id, settled, order_by, order_dir, limit, offset
    )


@router.get("/{fee_id}", response_model=AppFeeRead)
def get_fee(partner_id: UUID, fee_id: UUID, db: Session = Depends(get_db)):
    return billing_service.app_fees.get(db, partner_id, fee_id)


@router.patch("/{fee_id}", response_model=AppFeeRead)
def update_fee(
    partner_id: UUID,
    fee_id: UUID,
    payload: AppFeeUpdate,
    db: Session = Depends(get_db),
):
    return billing_service.app_fees.update(db, partner_id, fee_id, payload)
