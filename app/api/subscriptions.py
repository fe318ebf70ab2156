from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.api.deps import ensure_partner_access, get_db, require_auth, require_partner_access
from app.schemas.billing import (
    PlanRead,
    SavedCardCreate,
    SavedCardRead,
    SubscriptionCreate,
    SubscriptionPaymentCreate,
    SubscriptionPaymentResult,
    SubscriptionRead,
)
from app.services import billing as billing_service

router = APIRouter(tags=["subscriptions"])


def _owned_subscription(db: Session, subscription_id: UUID, auth: dict):
    subscription = billing_service.subscriptions.get(db, subscription_id)
    ensure_partner_access(auth, subscription.partner_id)
    return subscription


# ── Plans ────────────────────────────────────────────────


@router.get(
    "/plans", response_model=list[PlanRead], dependencies=[Depends(require_auth)]
)
def list_plans(db: Session = Depends(get_db)):
    return billing_service.plans.list_active(db)


# ── Saved cards ──────────────────────────────────────────


@router.get(
    "/partners/{partner_id}/cards",
    response_model=list[SavedCardRead],
    dependencies=[Depends(require_partner_access)],
)
def list_cards(partner_id: UUID, db: Session = Depends(get_db)):
    return billing_service.subscriptions.list_cards(db, partner_id)


@router.post(
    "/partners/{partner_id}/cards",
    response_model=SavedCardRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_partner_access)],
)
def save_card(partner_id: UUID, payload: SavedCardCreate, db: Session = Depends(get_db)):
    return billing_service.subscriptions.save_card(
        db, partner_id, payload.card_token, payload.is_default
    )


@router.delete(
    "/partners/{partner_id}/cards/{card_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_partner_access)],
)
def remove_card(partner_id: UUID, card_id: UUID, db: Session = Depends(get_db)):
    billing_service.subscriptions.remove_card(db, partner_id, card_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Subscriptions ────────────────────────────────────────


@router.post(
    "/partners/{partner_id}/subscriptions",
    response_model=SubscriptionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_partner_access)],
)
def create_subscription(
    partner_id: UUID, payload: SubscriptionCreate, db: Session = Depends(get_db)
):
    return billing_service.subscriptions.create(
        db, partner_id, payload.plan_id, payload.card_id
    )


@router.get(
    "/partners/{partner_id}/subscriptions/active",
    response_model=SubscriptionRead | None,
    dependencies=[Depends(require_partner_access)],
)
def active_subscription(partner_id: UUID, db: Session = Depends(get_db)):
    return billing_service.subscriptions.open_for_partner(db, partner_id)


@router.post("/subscriptions/{subscription_id}/pause", response_model=SubscriptionRead)
def pause_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    auth: dict = Depends(require_auth),
):
    subscription = _owned_subscription(db, subscription_id, auth)
    return billing_service.subscriptions.pause(db, subscription.id)


@router.post("/subscriptions/{subscription_id}/resume", response_model=SubscriptionRead)
def resume_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    auth: dict = Depends(require_auth),
):
    subscription = _owned_subscription(db, subscription_id, auth)
    return billing_service.subscriptions.resume(db, subscription.id)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    auth: dict = Depends(require_auth),
):
    subscription = _owned_subscription(db, subscription_id, auth)
    return billing_service.subscriptions.cancel(db, subscription.id)


# ── One-off card charges ─────────────────────────────────


@router.post(
    "/partners/{partner_id}/subscription-payments",
    response_model=SubscriptionPaymentResult,
    dependencies=[Depends(require_partner_access)],
)
def process_subscription_payment(
    partner_id: UUID,
    payload: SubscriptionPaymentCreate,
    db: Session = Depends(get_db),
):
    return billing_service.subscriptions.process_payment(
        db,
        partner_id,
        payload.plan_id,
        payload.card_id,
        amount=payload.amount,
        description=payload.description,
        is_renewal=payload.is_renewal,
        security_code=payload.security_code,
    )
