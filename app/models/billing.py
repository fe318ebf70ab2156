import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.types import UTCDateTime, utcnow

# ── Enums ────────────────────────────────────────────────


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    # Derived on read from due_date; never written to the column.
    overdue = "overdue"


class PaymentMethod(str, enum.Enum):
    pix = "pix"
    boleto = "boleto"
    credits = "credits"


class CreditStatus(str, enum.Enum):
    pending = "pending"
    applied = "applied"
    expired = "expired"


class FrequencyType(str, enum.Enum):
    months = "months"
    days = "days"


class SubscriptionStatus(str, enum.Enum):
    active = "active"
    paused = "paused"
    cancelled = "cancelled"
    failed = "failed"
    expired = "expired"


class WebhookEventStatus(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"
    ignored = "ignored"


# ── Fee ledger ───────────────────────────────────────────


class AppFee(Base):
    __tablename__ = "app_fees"
    __table_args__ = (
        Index("ix_app_fees_partner_unsettled", "partner_id", "settled", "order_date"),
        Index("ix_app_fees_invoice_id", "invoice_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    order_id: Mapped[str] = mapped_column(String(120), nullable=False)
    store_id: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(120), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(40), nullable=False)
    order_base_value: Mapped[int] = mapped_column(Integer, default=0)
    order_total_price: Mapped[int] = mapped_column(Integer, default=0)
    order_delivery_fee: Mapped[int] = mapped_column(Integer, default=0)
    order_card_fee: Mapped[int] = mapped_column(Integer, default=0)

    fee_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    fee_value: Mapped[int] = mapped_column(Integer, nullable=False)
    is_premium_rate: Mapped[bool] = mapped_column(Boolean, default=False)

    settled: Mapped[bool] = mapped_column(Boolean, default=False)
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id")
    )
    order_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    partner = relationship("Partner", back_populates="app_fees")
    invoice = relationship("Invoice", back_populates="fees")

    @property
    def app_fee(self) -> dict:
        return {
            "percentage": self.fee_percentage,
            "value": self.fee_value,
            "is_premium_rate": self.is_premium_rate,
        }


# ── Invoices ─────────────────────────────────────────────


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_partner_created", "partner_id", "created_at"),
        Index("ix_invoices_payment_id", "payment_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    reference_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    applied_credits_amount: Mapped[int] = mapped_column(Integer, default=0)
    applied_credits: Mapped[list | None] = mapped_column(JSON)
    details: Mapped[list] = mapped_column(JSON, nullable=False)
    partner_info: Mapped[dict | None] = mapped_column(JSON)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.pending
    )
    payment_id: Mapped[str | None] = mapped_column(String(120))
    payment_method: Mapped[PaymentMethod | None] = mapped_column(Enum(PaymentMethod))
    payment_data: Mapped[dict | None] = mapped_column(JSON)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    partner = relationship("Partner", back_populates="invoices")
    fees = relationship("AppFee", back_populates="invoice")
    charges = relationship(
        "InvoiceCharge", back_populates="invoice", order_by="InvoiceCharge.attempt"
    )

    def status_at(self, now: datetime) -> PaymentStatus:
        if self.payment_status == PaymentStatus.paid:
            return PaymentStatus.paid
        if self.due_date < now:
            return PaymentStatus.overdue
        return PaymentStatus.pending

    @property
    def display_status(self) -> PaymentStatus:
        return self.status_at(utcnow())


class InvoiceCharge(Base):
    """A PIX or boleto charge opened for an invoice.

    An invoice keeps every charge it was ever issued; the invoice's own
    ``payment_id`` only points at the most recent one.
    """

    __tablename__ = "invoice_charges"
    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_invoice_charges_payment_id"),
        Index("ix_invoice_charges_invoice_id", "invoice_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_id: Mapped[str] = mapped_column(String(120), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod), nullable=False
    )
    idempotency_key: Mapped[str] = mapped_column(String(160), nullable=False)
    # Last status seen at the gateway.
    status: Mapped[str] = mapped_column(String(40), default="pending")
    payment_data: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    invoice = relationship("Invoice", back_populates="charges")


# ── Credits ──────────────────────────────────────────────


class Credit(Base):
    __tablename__ = "credits"
    __table_args__ = (
        Index("ix_credits_partner_status_created", "partner_id", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    order_id: Mapped[str | None] = mapped_column(String(120))
    store_id: Mapped[str | None] = mapped_column(String(120))
    coupon_code: Mapped[str | None] = mapped_column(String(80))
    coupon_is_global: Mapped[bool] = mapped_column(Boolean, default=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CreditStatus] = mapped_column(
        Enum(CreditStatus), default=CreditStatus.pending
    )
    applied_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id")
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    partner = relationship("Partner", back_populates="credits")


# ── Subscriptions ────────────────────────────────────────


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    frequency_type: Mapped[FrequencyType] = mapped_column(
        Enum(FrequencyType), default=FrequencyType.months
    )
    features: Mapped[list | None] = mapped_column(JSON)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class SavedCard(Base):
    __tablename__ = "saved_cards"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    external_card_id: Mapped[str] = mapped_column(String(120), nullable=False)
    first_six_digits: Mapped[str | None] = mapped_column(String(6))
    last_four_digits: Mapped[str | None] = mapped_column(String(4))
    payment_method_id: Mapped[str | None] = mapped_column(String(40))
    payment_method_name: Mapped[str | None] = mapped_column(String(80))
    cardholder_name: Mapped[str | None] = mapped_column(String(255))
    expiration_month: Mapped[int | None] = mapped_column(Integer)
    expiration_year: Mapped[int | None] = mapped_column(Integer)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    partner = relationship("Partner", back_populates="saved_cards")


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_partner_status", "partner_id", "status"),
        Index("ix_subscriptions_external_id", "external_subscription_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    card_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("saved_cards.id")
    )
    external_customer_id: Mapped[str | None] = mapped_column(String(120))
    external_subscription_id: Mapped[str | None] = mapped_column(String(120))
    external_reference: Mapped[str | None] = mapped_column(String(160))
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.active
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    frequency_type: Mapped[FrequencyType] = mapped_column(
        Enum(FrequencyType), default=FrequencyType.months
    )
    next_payment_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    last_payment_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    plan = relationship("Plan")
    card = relationship("SavedCard")


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"
    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", name="uq_subscription_payments_idempotency_key"
        ),
        UniqueConstraint(
            "external_payment_id", name="uq_subscription_payments_external_payment_id"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id")
    )
    # Set for recurring charges reported by the gateway; one-off charges have none.
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id")
    )
    external_payment_id: Mapped[str | None] = mapped_column(String(120))
    external_reference: Mapped[str | None] = mapped_column(String(160))
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    status_detail: Mapped[str | None] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(String(255))
    is_renewal: Mapped[bool] = mapped_column(Boolean, default=False)
    idempotency_key: Mapped[str] = mapped_column(String(160), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)


# ── Gateway webhooks ─────────────────────────────────────


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("event_id", name="uq_webhook_events_event_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider: Mapped[str] = mapped_column(String(80), nullable=False)
    event_type: Mapped[str] = mapped_column(String(120), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON)
    status: Mapped[WebhookEventStatus] = mapped_column(
        Enum(WebhookEventStatus), default=WebhookEventStatus.pending
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )
