from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin, require_partner_access
from app.schemas.billing import PremiumGrant, PremiumStatus
from app.services import billing as billing_service
from app.services.common import get_partner

router = APIRouter(prefix="/partners/{partner_id}/premium", tags=["premium"])


@router.get(
    "", response_model=PremiumStatus, dependencies=[Depends(require_partner_access)]
)
def premium_status(partner_id: UUID, db: Session = Depends(get_db)):
    return billing_service.premium.status(get_partner(db, partner_id))


@router.post(
    "/grant", response_model=PremiumStatus, dependencies=[Depends(require_admin)]
)
def grant_premium(partner_id: UUID, payload: PremiumGrant, db: Session = Depends(get_db)):
    partner = billing_service.premium.grant_days(db, partner_id, payload.days)
    return billing_service.premium.status(partner)
