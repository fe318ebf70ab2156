"""partner billing schema

Revision ID: 001_partner_billing
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "001_partner_billing"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Partners
    op.create_table(
        "partners",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("document", sa.String(length=40), nullable=True),
        sa.Column("external_customer_id", sa.String(length=255), nullable=True),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "premium_source",
            sa.Enum("subscription", "manual", name="premiumsource"),
            nullable=True,
        ),
        sa.Column("premium_features", sa.JSON(), nullable=True),
        sa.Column("premium_valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("premium_activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("premium_deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_id", sa.UUID(), nullable=True),
        sa.Column(
            "subscription_cancelled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("cancellation_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # Job leases
    op.create_table(
        "job_leases",
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("holder", sa.String(length=120), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("partner_id", sa.UUID(), nullable=False),
        sa.Column("reference_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("original_amount", sa.Integer(), nullable=False),
        sa.Column("applied_credits_amount", sa.Integer(), nullable=False),
        sa.Column("applied_credits", sa.JSON(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("partner_info", sa.JSON(), nullable=True),
        sa.Column("total_orders", sa.Integer(), nullable=False),
        sa.Column(
            "payment_status",
            sa.Enum("pending", "paid", "overdue", name="paymentstatus"),
            nullable=False,
        ),
        sa.Column("payment_id", sa.String(length=120), nullable=True),
        sa.Column(
            "payment_method",
            sa.Enum("pix", "boleto", "credits", name="paymentmethod"),
            nullable=True,
        ),
        sa.Column("payment_data", sa.JSON(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_invoices_partner_created", "invoices", ["partner_id", "created_at"]
    )
    op.create_index("ix_invoices_payment_id", "invoices", ["payment_id"])

    # App fees
    op.create_table(
        "app_fees",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("partner_id", sa.UUID(), nullable=False),
        sa.Column("order_id", sa.String(length=120), nullable=False),
        sa.Column("store_id", sa.String(length=120), nullable=False),
        sa.Column("customer_id", sa.String(length=120), nullable=False),
        sa.Column("payment_method", sa.String(length=40), nullable=False),
        sa.Column("order_base_value", sa.Integer(), nullable=False),
        sa.Column("order_total_price", sa.Integer(), nullable=False),
        sa.Column("order_delivery_fee", sa.Integer(), nullable=False),
        sa.Column("order_card_fee", sa.Integer(), nullable=False),
        sa.Column("fee_percentage", sa.Float(), nullable=False),
        sa.Column("fee_value", sa.Integer(), nullable=False),
        sa.Column("is_premium_rate", sa.Boolean(), nullable=False),
        sa.Column("settled", sa.Boolean(), nullable=False),
        sa.Column("invoice_id", sa.UUID(), nullable=True),
        sa.Column("order_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_app_fees_partner_unsettled",
        "app_fees",
        ["partner_id", "settled", "order_date"],
    )
    op.create_index("ix_app_fees_invoice_id", "app_fees", ["invoice_id"])

    # Credits
    op.create_table(
        "credits",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("partner_id", sa.UUID(), nullable=False),
        sa.Column("order_id", sa.String(length=120), nullable=True),
        sa.Column("store_id", sa.String(length=120), nullable=True),
        sa.Column("coupon_code", sa.String(length=80), nullable=True),
        sa.Column("coupon_is_global", sa.Boolean(), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "applied", "expired", name="creditstatus"),
            nullable=False,
        ),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_id", sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_credits_partner_status_created",
        "credits",
        ["partner_id", "status", "created_at"],
    )

    # Plans
    op.create_table(
        "plans",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("frequency", sa.Integer(), nullable=False),
        sa.Column(
            "frequency_type",
            sa.Enum("months", "days", name="frequencytype"),
            nullable=False,
        ),
        sa.Column("features", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # Saved cards
    op.create_table(
        "saved_cards",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("partner_id", sa.UUID(), nullable=False),
        sa.Column("external_card_id", sa.String(length=120), nullable=False),
        sa.Column("first_six_digits", sa.String(length=6), nullable=True),
        sa.Column("last_four_digits", sa.String(length=4), nullable=True),
        sa.Column("payment_method_id", sa.String(length=40), nullable=True),
        sa.Column("payment_method_name", sa.String(length=80), nullable=True),
        sa.Column("cardholder_name", sa.String(length=255), nullable=True),
        sa.Column("expiration_month", sa.Integer(), nullable=True),
        sa.Column("expiration_year", sa.Integer(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    # Subscriptions
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("partner_id", sa.UUID(), nullable=False),
        sa.Column("plan_id", sa.UUID(), nullable=False),
        sa.Column("card_id", sa.UUID(), nullable=True),
        sa.Column("external_customer_id", sa.String(length=120), nullable=True),
        sa.Column("external_subscription_id", sa.String(length=120), nullable=True),
        sa.Column("external_reference", sa.String(length=160), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "active",
                "paused",
                "cancelled",
                "failed",
                "expired",
                name="subscriptionstatus",
            ),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("frequency", sa.Integer(), nullable=False),
        sa.Column(
            "frequency_type",
            sa.Enum("months", "days", name="frequencytype", create_type=False),
            nullable=False,
        ),
        sa.Column("next_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
        sa.ForeignKeyConstraint(["card_id"], ["saved_cards.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_subscriptions_partner_status", "subscriptions", ["partner_id", "status"]
    )
    op.create_index(
        "ix_subscriptions_external_id", "subscriptions", ["external_subscription_id"]
    )

    # Subscription payments
    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("partner_id", sa.UUID(), nullable=False),
        sa.Column("plan_id", sa.UUID(), nullable=True),
        sa.Column("external_payment_id", sa.String(length=120), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=40), nullable=False),
        sa.Column("status_detail", sa.String(length=120), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("is_renewal", sa.Boolean(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=160), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "idempotency_key", name="uq_subscription_payments_idempotency_key"
        ),
    )

    # Webhook events
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.String(length=80), nullable=False),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "processed", "failed", "ignored", name="webhookeventstatus"
            ),
            nullable=False,
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", name="uq_webhook_events_event_id"),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("subscription_payments")
    op.drop_index("ix_subscriptions_external_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_partner_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("saved_cards")
    op.drop_table("plans")
    op.drop_index("ix_credits_partner_status_created", table_name="credits")
    op.drop_table("credits")
    op.drop_index("ix_app_fees_invoice_id", table_name="app_fees")
    op.drop_index("ix_app_fees_partner_unsettled", table_name="app_fees")
    op.drop_table("app_fees")
    op.drop_index("ix_invoices_payment_id", table_name="invoices")
    op.drop_index("ix_invoices_partner_created", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("job_leases")
    op.drop_table("partners")

    for enum_name in (
        "webhookeventstatus",
        "subscriptionstatus",
        "frequencytype",
        "creditstatus",
        "paymentmethod",
        "paymentstatus",
        "premiumsource",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
