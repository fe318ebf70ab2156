import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Enum, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.types import UTCDateTime, utcnow

PREMIUM_FEATURE_KEYS = (
    "createCoupons",
    "unlimitedProducts",
    "productPromotions",
    "reducedFee",
    "advancedReports",
)


def premium_features(enabled: bool) -> dict[str, bool]:
    return {key: enabled for key in PREMIUM_FEATURE_KEYS}


class PremiumSource(str, enum.Enum):
    subscription = "subscription"
    manual = "manual"


class Partner(Base):
    """A store partner; billing reads and projects premium state onto it."""

    __tablename__ = "partners"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    document: Mapped[str | None] = mapped_column(String(40))
    external_customer_id: Mapped[str | None] = mapped_column(String(255))

    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)
    premium_source: Mapped[PremiumSource | None] = mapped_column(Enum(PremiumSource))
    premium_features: Mapped[dict | None] = mapped_column(JSON)
    premium_valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime())
    premium_activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    premium_deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    subscription_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    cancellation_date: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    app_fees = relationship("AppFee", back_populates="partner")
    invoices = relationship("Invoice", back_populates="partner")
    credits = relationship("Credit", back_populates="partner")
    saved_cards = relationship("SavedCard", back_populates="partner")
