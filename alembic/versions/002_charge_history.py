"""invoice charge history and subscription payment tracking

Revision ID: 002_charge_history
Revises: 001_partner_billing
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "002_charge_history"
down_revision = "001_partner_billing"
branch_labels = None
depends_on = None


def upgrade() -> None:
    payment_method = postgresql.ENUM(
        "pix", "boleto", "credits", name="paymentmethod", create_type=False
    )
    op.create_table(
        "invoice_charges",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.String(length=120), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("idempotency_key", sa.String(length=160), nullable=False),
        sa.Column("status", sa.String(length=40), nullable=False),
        sa.Column("payment_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id", name="uq_invoice_charges_payment_id"),
    )
    op.create_index("ix_invoice_charges_invoice_id", "invoice_charges", ["invoice_id"])

    # Charges opened before the history existed.
    op.execute(
        """
        INSERT INTO invoice_charges
            (id, invoice_id, attempt, payment_id, payment_method, idempotency_key,
             status, payment_data, created_at, updated_at)
        SELECT gen_random_uuid(), id, 1, payment_id, payment_method,
               'invoice-' || id || '-' || payment_method,
               CASE WHEN payment_status = 'paid' THEN 'approved' ELSE 'pending' END,
               payment_data, updated_at, updated_at
        FROM invoices
        WHERE payment_id IS NOT NULL AND payment_method IN ('pix', 'boleto')
        """
    )

    op.add_column(
        "subscription_payments",
        sa.Column("subscription_id", sa.UUID(), nullable=True),
    )
    op.add_column(
        "subscription_payments",
        sa.Column("external_reference", sa.String(length=160), nullable=True),
    )
    op.create_foreign_key(
        "fk_subscription_payments_subscription_id",
        "subscription_payments",
        "subscriptions",
        ["subscription_id"],
        ["id"],
    )
    op.create_unique_constraint(
        "uq_subscription_payments_external_payment_id",
        "subscription_payments",
        ["external_payment_id"],
    )


def downgrade() -> None:
    op.drop_constraint(
        "uq_subscription_payments_external_payment_id",
        "subscription_payments",
        type_="unique",
    )
    op.drop_constraint(
        "fk_subscription_payments_subscription_id",
        "subscription_payments",
        type_="foreignkey",
    )
    op.drop_column("subscription_payments", "external_reference")
    op.drop_column("subscription_payments", "subscription_id")
    op.drop_index("ix_invoice_charges_invoice_id", table_name="invoice_charges")
    op.drop_table("invoice_charges")
