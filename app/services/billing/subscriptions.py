"""Recurring premium subscriptions: cards, lifecycle and gateway payment events."""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import GatewayError, NotFoundError, ValidationError
from app.metrics import SUBSCRIPTION_PAYMENT_EVENTS
from app.models.billing import (
    FrequencyType,
    Plan,
    SavedCard,
    Subscription,
    SubscriptionPayment,
    SubscriptionStatus,
)
from app.models.partner import Partner, PremiumSource
from app.models.types import utcnow
from app.services.billing.premium import premium
from app.services.common import coerce_uuid, get_partner
from app.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)

EXTERNAL_REFERENCE_PREFIX = "premium_"
OPEN_STATUSES = (SubscriptionStatus.active, SubscriptionStatus.paused)
FAILURE_STATUSES = ("rejected", "cancelled")
# One-off card charges whose final outcome is still to be learned.
UNRESOLVED_CARD_STATUSES = ("unknown", "pending", "in_process")
# An unresolved charge the gateway never heard of is given up after this long.
UNRESOLVED_CARD_WINDOW = timedelta(days=2)


def period_days(frequency: int, frequency_type: FrequencyType) -> int:
    if frequency_type == FrequencyType.days:
        return frequency
    return frequency * 30


def _parse_gateway_date(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable gateway date: %s", value)
        return None


class Subscriptions:
    def __init__(self, gateway=None) -> None:
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or get_payment_gateway()

    # ── Customers & cards ────────────────────────────────

    def get_or_create_customer(self, db: Session, partner: Partner) -> str:
        if partner.external_customer_id:
            return partner.external_customer_id
        customer = self.gateway.get_customer_by_email(partner.email)
        if customer is None:
            customer = self.gateway.create_customer(partner.email, first_name=partner.name)
        partner.external_customer_id = str(customer["id"])
        db.commit()
        logger.info(
            "Linked gateway customer %s",
            partner.external_customer_id,
            extra={"partner_id": partner.id},
        )
        return partner.external_customer_id

    def save_card(
        self, db: Session, partner_id: str, card_token: str, is_default: bool = False
    ) -> SavedCard:
        partner = get_partner(db, partner_id)
        customer_id = self.get_or_create_customer(db, partner)
        response = self.gateway.save_card(customer_id, card_token)
        existing = self.list_cards(db, partner_id)
        make_default = is_default or not existing
        if make_default:
            for card in existing:
                card.is_default = False
        payment_method = response.get("payment_method") or {}
        card = SavedCard(
            partner_id=partner.id,
            external_card_id=str(response["id"]),
            first_six_digits=response.get("first_six_digits"),
            last_four_digits=response.get("last_four_digits"),
            payment_method_id=payment_method.get("id"),
            payment_method_name=payment_method.get("name"),
            cardholder_name=(response.get("cardholder") or {}).get("name"),
            expiration_month=response.get("expiration_month"),
            expiration_year=response.get("expiration_year"),
            is_default=make_default,
        )
        db.add(card)
        db.commit()
        db.refresh(card)
        logger.info("Saved card: %s", card.id, extra={"partner_id": partner.id})
        return card

    @staticmethod
    def list_cards(db: Session, partner_id: str) -> list[SavedCard]:
        return (
            db.query(SavedCard)
            .filter(SavedCard.partner_id == coerce_uuid(partner_id))
            .filter(SavedCard.deleted_at.is_(None))
            .order_by(SavedCard.created_at.asc())
            .all()
        )

    @staticmethod
    def get_card(db: Session, partner_id: str, card_id: str) -> SavedCard:
        card = db.get(SavedCard, coerce_uuid(card_id))
        if (
            not card
            or card.partner_id != coerce_uuid(partner_id)
            or card.deleted_at is not None
        ):
            raise NotFoundError("Card not found")
        return card

    def remove_card(
        self, db: Session, partner_id: str, card_id: str, now: datetime | None = None
    ) -> None:
        card = self.get_card(db, partner_id, card_id)
        in_use = (
            db.query(Subscription)
            .filter(Subscription.card_id == card.id)
            .filter(Subscription.status.in_(OPEN_STATUSES))
            .first()
        )
        if in_use:
            raise ValidationError("Card is used by an open subscription")
        partner = get_partner(db, partner_id)
        if partner.external_customer_id:
            self.gateway.delete_card(partner.external_customer_id, card.external_card_id)
        card.deleted_at = now or utcnow()
        card.is_default = False
        db.commit()
        logger.info("Removed card: %s", card.id, extra={"partner_id": partner.id})

    # ── Lifecycle ────────────────────────────────────────

    @staticmethod
    def get(db: Session, subscription_id: str) -> Subscription:
        subscription = db.get(Subscription, coerce_uuid(subscription_id))
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    @staticmethod
    def open_for_partner(db: Session, partner_id) -> Subscription | None:
        return (
            db.query(Subscription)
            .filter(Subscription.partner_id == coerce_uuid(partner_id))
            .filter(Subscription.status.in_(OPEN_STATUSES))
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def create(
        self,
        db: Session,
        partner_id: str,
        plan_id: str,
        card_id: str,
        now: datetime | None = None,
    ) -> Subscription:
        now = now or utcnow()
        partner = get_partner(db, partner_id)
        plan = db.get(Plan, coerce_uuid(plan_id))
        if not plan or not plan.is_active:
            raise NotFoundError("Plan not found")
        card = self.get_card(db, partner_id, card_id)
        if self.open_for_partner(db, partner.id):
            raise ValidationError("Partner already has an open subscription")

        customer_id = self.get_or_create_customer(db, partner)
        external_reference = (
            f"{EXTERNAL_REFERENCE_PREFIX}{partner.id}_{int(now.timestamp() * 1000)}"
        )
        response = self.gateway.create_subscription(
            payer_email=partner.email,
            card_token_id=card.external_card_id,
            reason=f"Premium subscription - {plan.name}",
            external_reference=external_reference,
            frequency=plan.frequency,
            frequency_type=plan.frequency_type.value,
            amount=plan.price,
            currency=plan.currency,
        )
        next_payment_date = _parse_gateway_date(
            response.get("next_payment_date")
        ) or now + timedelta(days=period_days(plan.frequency, plan.frequency_type))

        subscription = Subscription(
            partner_id=partner.id,
            plan_id=plan.id,
            card_id=card.id,
            external_customer_id=customer_id,
            external_subscription_id=str(response["id"]),
            external_reference=external_reference,
            status=SubscriptionStatus.active,
            amount=plan.price,
            currency=plan.currency,
            frequency=plan.frequency,
            frequency_type=plan.frequency_type,
            next_payment_date=next_payment_date,
            failure_count=0,
        )
        db.add(subscription)
        db.flush()
        partner.subscription_id = subscription.id
        partner.subscription_cancelled = False
        partner.cancellation_date = None
        premium.activate(partner, PremiumSource.subscription, now=now)
        db.commit()
        db.refresh(subscription)
        logger.info(
            "Created Subscription: %s",
            subscription.id,
            extra={"partner_id": partner.id, "subscription_id": subscription.id},
        )
        return subscription

    def pause(self, db: Session, subscription_id: str) -> Subscription:
        subscription = self.get(db, subscription_id)
        if subscription.status != SubscriptionStatus.active:
            raise ValidationError(
                f"Cannot pause a {subscription.status.value} subscription"
            )
        if subscription.external_subscription_id:
            self.gateway.pause_subscription(subscription.external_subscription_id)
        subscription.status = SubscriptionStatus.paused
        db.commit()
        db.refresh(subscription)
        logger.info(
            "Paused Subscription: %s",
            subscription.id,
            extra={"subscription_id": subscription.id},
        )
        return subscription

    def resume(self, db: Session, subscription_id: str) -> Subscription:
        subscription = self.get(db, subscription_id)
        if subscription.status != SubscriptionStatus.paused:
            raise ValidationError(
                f"Cannot resume a {subscription.status.value} subscription"
            )
        if subscription.external_subscription_id:
            self.gateway.resume_subscription(subscription.external_subscription_id)
        subscription.status = SubscriptionStatus.active
        db.commit()
        db.refresh(subscription)
        logger.info(
            "Resumed Subscription: %s",
            subscription.id,
            extra={"subscription_id": subscription.id},
        )
        return subscription

    def cancel(
        self, db: Session, subscription_id: str, now: datetime | None = None
    ) -> Subscription:
        """Cancel at the gateway; premium keeps running until the paid period ends."""
        now = now or utcnow()
        subscription = self.get(db, subscription_id)
        if subscription.status not in OPEN_STATUSES:
            raise ValidationError(
                f"Cannot cancel a {subscription.status.value} subscription"
            )
        if subscription.external_subscription_id:
            self.gateway.cancel_subscription(subscription.external_subscription_id)
        subscription.status = SubscriptionStatus.cancelled
        subscription.cancelled_at = now
        partner = db.get(Partner, subscription.partner_id)
        partner.subscription_cancelled = True
        partner.cancellation_date = now
        if partner.is_premium:
            ends_at = subscription.next_payment_date or now
            granted = partner.premium_valid_until
            partner.premium_valid_until = max(ends_at, granted) if granted else ends_at
        db.commit()
        db.refresh(subscription)
        logger.info(
            "Cancelled Subscription: %s",
            subscription.id,
            extra={"partner_id": partner.id, "subscription_id": subscription.id},
        )
        return subscription

    # ── Gateway events ───────────────────────────────────

    def _locate(self, db: Session, event: dict[str, Any]) -> Subscription | None:
        reference = str(event.get("external_reference") or "")
        if reference.startswith(EXTERNAL_REFERENCE_PREFIX):
            parts = reference.split("_")
            try:
                partner_id = uuid.UUID(parts[1])
            except (IndexError, ValueError):
                logger.warning("Malformed subscription reference: %s", reference)
                return None
            return self.open_for_partner(db, partner_id)
        preapproval_id = event.get("preapproval_id")
        if preapproval_id:
            return (
                db.query(Subscription)
                .filter(Subscription.external_subscription_id == str(preapproval_id))
                .first()
            )
        return None

    @staticmethod
    def is_subscription_event(event: dict[str, Any]) -> bool:
        reference = str(event.get("external_reference") or "")
        return reference.startswith(EXTERNAL_REFERENCE_PREFIX) or bool(
            event.get("preapproval_id")
        )

    def _record_charge(
        self, db: Session, subscription: Subscription, event: dict[str, Any], status: str
    ) -> bool:
        """Track one recurring charge by its gateway id.

        Returns False when this charge's outcome has already been applied, so
        repeated notifications about the same payment count once.
        """
        payment_id = event.get("id")
        if not payment_id:
            return True
        record = (
            db.query(SubscriptionPayment)
            .filter(SubscriptionPayment.external_payment_id == str(payment_id))
            .first()
        )
        if record is None:
            db.add(
                SubscriptionPayment(
                    partner_id=subscription.partner_id,
                    plan_id=subscription.plan_id,
                    subscription_id=subscription.id,
                    external_payment_id=str(payment_id),
                    external_reference=event.get("external_reference"),
                    amount=subscription.amount,
                    status=status or "unknown",
                    status_detail=str(event.get("status_detail") or "")[:120] or None,
                    is_renewal=True,
                    idempotency_key=f"subscription-charge-{payment_id}",
                )
            )
            return True
        previous = record.status
        record.status = status or previous
        if previous == status:
            return False
        return not (previous in FAILURE_STATUSES and status in FAILURE_STATUSES)

    def handle_payment_event(
        self, db: Session, event: dict[str, Any], now: datetime | None = None
    ) -> Subscription | None:
        """Apply one recurring-charge outcome to its subscription.

        Approved charges clear the failure streak. Rejected or cancelled
        charges extend it, and the subscription fails once the streak hits
        the limit. Anything else leaves the subscription as it was. Each
        gateway payment counts once, however many notifications it produces.
        """
        now = now or utcnow()
        subscription = self._locate(db, event)
        if subscription is None:
            logger.info("No subscription matches payment event %s", event.get("id"))
            return None
        status = str(event.get("status") or "")
        log_extra = {
            "partner_id": subscription.partner_id,
            "subscription_id": subscription.id,
        }
        if not self._record_charge(db, subscription, event, status):
            db.commit()
            logger.info(
                "Payment %s already applied", event.get("id"), extra=log_extra
            )
            return subscription
        SUBSCRIPTION_PAYMENT_EVENTS.labels(status or "unknown").inc()
        partner = db.get(Partner, subscription.partner_id)

        if status == "approved":
            subscription.failure_count = 0
            subscription.last_payment_date = now
            if subscription.status in (*OPEN_STATUSES, SubscriptionStatus.failed):
                subscription.status = SubscriptionStatus.active
                subscription.next_payment_date = now + timedelta(
                    days=period_days(subscription.frequency, subscription.frequency_type)
                )
                partner.subscription_id = subscription.id
                premium.activate(partner, PremiumSource.subscription, now=now)
            logger.info("Subscription payment approved", extra=log_extra)
        elif status in FAILURE_STATUSES:
            subscription.failure_count = (subscription.failure_count or 0) + 1
            if subscription.failure_count >= settings.subscription_max_failures:
                subscription.status = SubscriptionStatus.failed
                premium.fall_back(partner, now)
                logger.warning(
                    "Subscription failed after %s consecutive failures",
                    subscription.failure_count,
                    extra=log_extra,
                )
            else:
                logger.info(
                    "Subscription payment %s (%s in a row)",
                    status,
                    subscription.failure_count,
                    extra=log_extra,
                )
        else:
            logger.info("Ignoring subscription payment status %r", status, extra=log_extra)
        try:
            db.commit()
        except IntegrityError:
            # Another delivery of the same payment got there first.
            db.rollback()
            logger.info("Payment %s applied concurrently", event.get("id"), extra=log_extra)
        db.refresh(subscription)
        return subscription

    # ── Scheduled expiry ─────────────────────────────────

    def expire_lapsed_premium(
        self, db: Session, now: datetime | None = None
    ) -> dict[str, int]:
        now = now or utcnow()
        expired = 0
        cancelled = (
            db.query(Subscription)
            .filter(Subscription.status == SubscriptionStatus.cancelled)
            .all()
        )
        for subscription in cancelled:
            ends_at = subscription.next_payment_date or subscription.cancelled_at
            if ends_at is None or ends_at <= now:
                subscription.status = SubscriptionStatus.expired
                expired += 1

        revoked = 0
        lapsed = (
            db.query(Partner)
            .filter(Partner.is_premium.is_(True))
            .filter(Partner.premium_valid_until.is_not(None))
            .filter(Partner.premium_valid_until <= now)
            .all()
        )
        for partner in lapsed:
            if self.open_for_partner(db, partner.id):
                continue
            premium.deactivate(partner, now)
            revoked += 1
        db.commit()
        if expired or revoked:
            logger.info(
                "Expired %s subscriptions, revoked premium for %s partners",
                expired,
                revoked,
            )
        return {"expired_subscriptions": expired, "revoked_premium": revoked}

    # ── One-off card charges ─────────────────────────────

    @staticmethod
    def _grant_plan_period(db: Session, partner_id, plan: Plan, now: datetime) -> None:
        premium.grant_days(
            db, partner_id, period_days(plan.frequency, plan.frequency_type), now
        )

    def process_payment(
        self,
        db: Session,
        partner_id: str,
        plan_id: str,
        card_id: str,
        amount: int | None = None,
        description: str | None = None,
        is_renewal: bool = False,
        security_code: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Charge a saved card for a plan, server side only.

        Every attempt is recorded. An approved charge extends premium by the
        plan's period. A charge whose outcome is unknown is left for
        :meth:`resolve_card_charges`.
        """
        now = now or utcnow()
        partner = get_partner(db, partner_id)
        plan = db.get(Plan, coerce_uuid(plan_id))
        if not plan:
            raise NotFoundError("Plan not found")
        card = self.get_card(db, partner_id, card_id)
        amount = amount or plan.price
        description = description or f"Premium - {plan.name}"
        customer_id = self.get_or_create_customer(db, partner)
        token = uuid.uuid4().hex

        record = SubscriptionPayment(
            partner_id=partner.id,
            plan_id=plan.id,
            amount=amount,
            description=description,
            is_renewal=is_renewal,
            idempotency_key=f"subscription-payment-{token}",
            external_reference=f"subscription_payment_{partner.id}_{token}",
            status="pending",
        )
        try:
            response = self.gateway.create_card_payment(
                customer_id,
                card.external_card_id,
                amount,
                description,
                idempotency_key=record.idempotency_key,
                external_reference=record.external_reference,
                security_code=security_code,
            )
        except GatewayError as exc:
            record.status = "unknown" if exc.outcome_unknown else "error"
            record.status_detail = exc.message[:120]
            db.add(record)
            db.commit()
            logger.warning(
                "Card charge failed: %s", exc.message, extra={"partner_id": partner.id}
            )
            return {
                "success": False,
                "payment_id": None,
                "status": record.status,
                "error": exc.message,
            }

        record.external_payment_id = str(response.get("id"))
        record.status = str(response.get("status") or "unknown")
        record.status_detail = response.get("status_detail")
        db.add(record)
        db.commit()

        if record.status != "approved":
            logger.info(
                "Card charge %s: %s",
                record.status,
                record.status_detail,
                extra={"partner_id": partner.id},
            )
            return {
                "success": False,
                "payment_id": record.external_payment_id,
                "status": record.status,
                "error": f"Payment {record.status}: {record.status_detail}",
            }
        self._grant_plan_period(db, partner.id, plan, now)
        logger.info(
            "Card charge approved: %s",
            record.external_payment_id,
            extra={"partner_id": partner.id},
        )
        return {
            "success": True,
            "payment_id": record.external_payment_id,
            "status": record.status,
            "error": None,
        }

    def resolve_card_charges(
        self, db: Session, now: datetime | None = None
    ) -> dict[str, int]:
        """Follow up one-off card charges whose outcome is not final yet.

        A charge whose creation timed out has no gateway id and is looked up by
        its external reference. Approved charges grant the plan's period; a
        charge the gateway still does not know after a grace window is
        marked expired.
        """
        now = now or utcnow()
        unresolved = (
            db.query(SubscriptionPayment)
            .filter(SubscriptionPayment.subscription_id.is_(None))
            .filter(SubscriptionPayment.status.in_(UNRESOLVED_CARD_STATUSES))
            .order_by(SubscriptionPayment.created_at.asc())
            .all()
        )
        result = {"checked": 0, "approved": 0, "errors": 0}
        for record in unresolved:
            result["checked"] += 1
            log_extra = {"partner_id": record.partner_id}
            try:
                if record.external_payment_id:
                    payment = self.gateway.get_payment(record.external_payment_id)
                elif record.external_reference:
                    payment = self.gateway.find_payment_by_reference(
                        record.external_reference
                    )
                else:
                    payment = None
            except GatewayError as exc:
                result["errors"] += 1
                logger.warning(
                    "Card charge follow-up failed: %s", exc.message, extra=log_extra
                )
                continue

            if payment is None:
                if record.created_at <= now - UNRESOLVED_CARD_WINDOW:
                    record.status = "expired"
                    record.status_detail = "Not found at gateway"
                    db.commit()
                    logger.warning(
                        "Card charge %s never reached the gateway",
                        record.id,
                        extra=log_extra,
                    )
                continue

            status = str(payment.get("status") or "unknown")
            record.external_payment_id = str(payment.get("id"))
            record.status_detail = payment.get("status_detail") or record.status_detail
            approved = status == "approved" and record.status != "approved"
            record.status = status
            db.commit()
            if not approved:
                continue
            plan = db.get(Plan, record.plan_id) if record.plan_id else None
            if plan is not None:
                self._grant_plan_period(db, record.partner_id, plan, now)
            result["approved"] += 1
            logger.info(
                "Card charge %s approved on follow-up",
                record.external_payment_id,
                extra=log_extra,
            )
        return result


subscriptions = Subscriptions()
