from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin, require_partner_access
from app.schemas.billing import CreditCreate, CreditRead, CreditSummary
from app.schemas.common import ListResponse
from app.services import billing as billing_service

router = APIRouter(
    prefix="/partners/{partner_id}/credits",
    tags=["credits"],
    dependencies=[Depends(require_partner_access)],
)


@router.post(
    "",
    response_model=CreditRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def create_credit(
    partner_id: UUID, payload: CreditCreate, db: Session = Depends(get_db)
):
    return billing_service.credits.create(db, partner_id, payload)


@router.get("/summary", response_model=CreditSummary)
def credit_summary(partner_id: UUID, db: Session = Depends(get_db)):
    return billing_service.credits.summary(db, partner_id)


@router.get("", response_model=ListResponse[CreditRead])
def list_credits(
    partner_id: UUID,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.credits.list_response(
        db, partner_id, status, order_by, order_dir, limit, offset
    )


@router.post(
    "/{credit_id}/expire",
    response_model=CreditRead,
    dependencies=[Depends(require_admin)],
)
def expire_credit(partner_id: UUID, credit_id: UUID, db: Session = Depends(get_db)):
    return billing_service.credits.expire(db, partner_id, credit_id)
