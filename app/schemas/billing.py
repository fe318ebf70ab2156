from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictBool

# ── App fee ──────────────────────────────────────────────


class AppFeeValue(BaseModel):
    model_config = ConfigDict(extra="forbid")
    percentage: float = Field(ge=0, le=100)
    value: int = Field(ge=0)
    is_premium_rate: StrictBool


class AppFeeBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    order_id: str = Field(min_length=1, max_length=120)
    store_id: str = Field(min_length=1, max_length=120)
    customer_id: str = Field(min_length=1, max_length=120)
    payment_method: str = Field(min_length=1, max_length=40)
    order_base_value: int = Field(default=0, ge=0)
    order_total_price: int = Field(default=0, ge=0)
    order_delivery_fee: int = Field(default=0, ge=0)
    order_card_fee: int = Field(default=0, ge=0)
    app_fee: AppFeeValue
    order_date: datetime
    completed_at: datetime


class AppFeeCreate(AppFeeBase):
    pass


class AppFeeUpdate(BaseModel):
    # settled and invoice_id are owned by the invoice cycle; extra="forbid"
    # rejects any attempt to patch them.
    model_config = ConfigDict(extra="forbid")
    order_id: str | None = Field(default=None, min_length=1, max_length=120)
    store_id: str | None = Field(default=None, min_length=1, max_length=120)
    customer_id: str | None = Field(default=None, min_length=1, max_length=120)
    payment_method: str | None = Field(default=None, min_length=1, max_length=40)
    order_base_value: int | None = Field(default=None, ge=0)
    order_total_price: int | None = Field(default=None, ge=0)
    order_delivery_fee: int | None = Field(default=None, ge=0)
    order_card_fee: int | None = Field(default=None, ge=0)
    app_fee: AppFeeValue | None = None
    order_date: datetime | None = None
    completed_at: datetime | None = None


class AppFeeRead(AppFeeBase):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    partner_id: UUID
    settled: bool
    invoice_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class FeeSummary(BaseModel):
    total_orders: int
    total_base_value: int
    total_orders_value: int
    total_fees: int
    average_fee_percentage: float
    start_date: datetime
    end_date: datetime


# ── Credit ───────────────────────────────────────────────


class CreditCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    order_id: str | None = Field(default=None, max_length=120)
    store_id: str | None = Field(default=None, max_length=120)
    coupon_code: str | None = Field(default=None, max_length=80)
    coupon_is_global: bool = False
    value: int = Field(gt=0)


class CreditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    partner_id: UUID
    order_id: str | None = None
    store_id: str | None = None
    coupon_code: str | None = None
    coupon_is_global: bool
    value: int
    status: str
    applied_at: datetime | None = None
    invoice_id: UUID | None = None
    created_at: datetime


class AppliedCredit(BaseModel):
    credit_id: UUID
    coupon_code: str | None = None
    original_value: int
    applied_value: int


class CreditApplication(BaseModel):
    applied_amount: int
    remaining_amount: int
    applied_credits: list[AppliedCredit]


class CreditSummary(BaseModel):
    total_credits: int
    available_credits: int
    applied_credits: int
    pending: int
    applied: int


# ── Invoice ──────────────────────────────────────────────


class InvoiceDetail(BaseModel):
    fee_id: UUID
    order_id: str
    value: int


class PartnerInfo(BaseModel):
    name: str
    email: str
    document: str | None = None


class PaymentData(BaseModel):
    qr_code: str | None = None
    qr_code_base64: str | None = None
    ticket_url: str | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    partner_id: UUID
    reference_date: datetime
    due_date: datetime
    total_amount: int
    original_amount: int
    applied_credits_amount: int
    applied_credits: list[AppliedCredit] | None = None
    details: list[InvoiceDetail]
    partner_info: PartnerInfo | None = None
    total_orders: int
    # "overdue" is never stored; the ORM exposes it as display_status.
    payment_status: Literal["pending", "paid", "overdue"] = Field(
        validation_alias="display_status"
    )
    payment_id: str | None = None
    payment_method: str | None = None
    payment_data: PaymentData | None = None
    paid_at: datetime | None = None
    created_at: datetime


class IdentificationIn(BaseModel):
    type: str = Field(min_length=1, max_length=20)
    number: str = Field(min_length=1, max_length=40)


class PayerIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    first_name: str | None = Field(default=None, max_length=120)
    last_name: str | None = Field(default=None, max_length=120)
    identification: IdentificationIn | None = None


class PaymentRequest(BaseModel):
    method: Literal["pix", "boleto"]
    payer: PayerIn | None = None


class PaymentStatusRead(BaseModel):
    invoice_id: UUID
    payment_id: str | None = None
    gateway_status: str | None = None
    payment_status: Literal["pending", "paid", "overdue"]
    paid_at: datetime | None = None


# ── Access block ─────────────────────────────────────────


class OverdueInvoice(BaseModel):
    id: UUID
    due_date: datetime
    total_amount: int


class AccessBlockStatus(BaseModel):
    has_overdue_invoice: bool
    overdue_invoice: OverdueInvoice | None = None
    days_past_due: int
    is_blocked: bool
    blocking_message: str | None = None
    severity: Literal["none", "warning", "blocked", "suspended"]


# ── Plans, cards & subscriptions ─────────────────────────


class PlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    name: str
    description: str | None = None
    price: int
    currency: str
    frequency: int
    frequency_type: str
    features: list[str] | None = None
    is_active: bool


class SavedCardCreate(BaseModel):
    card_token: str = Field(min_length=1, max_length=255)
    is_default: bool = False


class SavedCardRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    external_card_id: str
    first_six_digits: str | None = None
    last_four_digits: str | None = None
    payment_method_id: str | None = None
    payment_method_name: str | None = None
    cardholder_name: str | None = None
    expiration_month: int | None = None
    expiration_year: int | None = None
    is_default: bool
    created_at: datetime


class SubscriptionCreate(BaseModel):
    plan_id: UUID
    card_id: UUID


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    partner_id: UUID
    plan_id: UUID
    card_id: UUID | None = None
    external_customer_id: str | None = None
    external_subscription_id: str | None = None
    status: str
    amount: int
    currency: str
    frequency: int
    frequency_type: str
    next_payment_date: datetime | None = None
    failure_count: int
    last_payment_date: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class SubscriptionPaymentCreate(BaseModel):
    plan_id: UUID
    card_id: UUID
    amount: int | None = Field(default=None, gt=0)
    description: str | None = Field(default=None, max_length=255)
    is_renewal: bool = False
    security_code: str | None = Field(default=None, min_length=3, max_length=4)


class SubscriptionPaymentResult(BaseModel):
    success: bool
    payment_id: str | None = None
    status: str | None = None
    error: str | None = None


# ── Premium ──────────────────────────────────────────────


class PremiumStatus(BaseModel):
    is_premium: bool
    premium_valid_until: datetime | None = None
    premium_source: str | None = None
    subscription_cancelled: bool
    features: dict[str, bool]


class PremiumGrant(BaseModel):
    days: int = Field(gt=0, le=3650)


# ── Jobs ─────────────────────────────────────────────────


class FeeRepairResult(BaseModel):
    success: bool
    fixed_fees_count: int


class CycleRunRead(BaseModel):
    run_id: str
    acquired: bool
    partners_seen: int
    invoices_created: int
    skipped: int
    failed: int
    invoice_ids: list[UUID]
