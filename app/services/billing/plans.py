import logging

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError
from app.models.billing import FrequencyType, Plan
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "name": "Plano Mensal",
        "price": 4990,
        "frequency": 1,
        "frequency_type": FrequencyType.months,
        "features": [
            "All premium features",
            "Priority support",
            "Advanced reports",
            "Unlimited orders",
        ],
    },
    {
        "name": "Plano Trimestral",
        "price": 12990,
        "frequency": 3,
        "frequency_type": FrequencyType.months,
        "features": [
            "Everything in the monthly plan",
            "15% discount",
            "Personalised consulting",
            "Advanced dashboard",
        ],
    },
    {
        "name": "Plano Anual",
        "price": 44990,
        "frequency": 12,
        "frequency_type": FrequencyType.months,
        "features": [
            "Everything in the quarterly plan",
            "25% discount",
            "Early access to new features",
            "24/7 VIP support",
        ],
    },
]


class Plans:
    @staticmethod
    def list_active(db: Session) -> list[Plan]:
        return (
            db.query(Plan)
            .filter(Plan.is_active.is_(True))
            .order_by(Plan.price.asc())
            .all()
        )

    @staticmethod
    def get(db: Session, plan_id: str) -> Plan:
        plan = db.get(Plan, coerce_uuid(plan_id))
        if not plan:
            raise NotFoundError("Plan not found")
        return plan

    @staticmethod
    def seed_defaults(db: Session) -> int:
        """Create the default plans that do not exist yet (matched by name)."""
        existing = {name for (name,) in db.query(Plan.name).all()}
        created = 0
        for values in DEFAULT_PLANS:
            if values["name"] in existing:
                continue
            db.add(Plan(currency=settings.billing_currency, is_active=True, **values))
            created += 1
        db.commit()
        if created:
            logger.info("Seeded %s default plans", created)
        return created


plans = Plans()
