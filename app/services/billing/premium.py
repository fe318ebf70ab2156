"""Premium tier projection onto the partner record."""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.models.partner import Partner, PremiumSource, premium_features
from app.models.types import utcnow
from app.services.common import get_partner

logger = logging.getLogger(__name__)


def _on_running_subscription(partner: Partner) -> bool:
    return (
        bool(partner.is_premium)
        and partner.premium_source == PremiumSource.subscription
        and not partner.subscription_cancelled
    )


class Premium:
    @staticmethod
    def activate(
        partner: Partner,
        source: PremiumSource,
        *,
        valid_until: datetime | None = None,
        now: datetime | None = None,
    ) -> None:
        """Turn premium on.

        An expiry still in the future is never shortened: the later of the
        current and the new ``valid_until`` wins, and a subscription (no
        ``valid_until``) keeps any granted days left on top of it.
        """
        now = now or utcnow()
        current = partner.premium_valid_until
        if (
            partner.is_premium
            and current is not None
            and current > now
            and (valid_until is None or current > valid_until)
        ):
            valid_until = current
        if not partner.is_premium:
            partner.premium_activated_at = now
        partner.is_premium = True
        partner.premium_source = source
        partner.premium_features = premium_features(True)
        partner.premium_valid_until = valid_until
        partner.premium_deactivated_at = None
        logger.info(
            "Premium activated (%s)", source.value, extra={"partner_id": partner.id}
        )

    @staticmethod
    def deactivate(partner: Partner, now: datetime | None = None) -> None:
        partner.is_premium = False
        partner.premium_source = None
        partner.premium_features = premium_features(False)
        partner.premium_valid_until = None
        partner.premium_deactivated_at = now or utcnow()
        logger.info("Premium deactivated", extra={"partner_id": partner.id})

    @staticmethod
    def fall_back(partner: Partner, now: datetime | None = None) -> None:
        """Drop subscription-backed premium, keeping any paid-for days still left."""
        now = now or utcnow()
        remaining = partner.premium_valid_until
        if partner.is_premium and remaining is not None and remaining > now:
            partner.premium_source = PremiumSource.manual
            logger.info(
                "Subscription premium ended; granted days run until %s",
                remaining.isoformat(),
                extra={"partner_id": partner.id},
            )
            return
        Premium.deactivate(partner, now)

    @staticmethod
    def grant_days(
        db: Session, partner_id: str, days: int, now: datetime | None = None
    ) -> Partner:
        """Manually extend premium by ``days``.

        Counts from the current expiry while premium is still running,
        otherwise from now. A running subscription stays the premium source.
        """
        now = now or utcnow()
        partner = get_partner(db, partner_id)
        current = partner.premium_valid_until
        if partner.is_premium and current is not None and current > now:
            base = current
        else:
            base = now
        source = (
            PremiumSource.subscription
            if _on_running_subscription(partner)
            else PremiumSource.manual
        )
        Premium.activate(
            partner,
            source,
            valid_until=base + timedelta(days=days),
            now=now,
        )
        db.commit()
        db.refresh(partner)
        logger.info("Granted %s premium days", days, extra={"partner_id": partner.id})
        return partner

    @staticmethod
    def status(partner: Partner, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        valid_until = partner.premium_valid_until
        active = bool(partner.is_premium) and (
            valid_until is None
            or valid_until > now
            or _on_running_subscription(partner)
        )
        return {
            "is_premium": active,
            "premium_valid_until": valid_until,
            "premium_source": partner.premium_source.value
            if partner.premium_source
            else None,
            "subscription_cancelled": bool(partner.subscription_cancelled),
            "features": premium_features(active),
        }


premium = Premium()
