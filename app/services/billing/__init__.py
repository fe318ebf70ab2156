from app.services.billing.access import (
    access_block_for_partner,
    evaluate_access_block,
)
from app.services.billing.credits import Credits, credits
from app.services.billing.fees import AppFees, app_fees
from app.services.billing.invoice_cycle import (
    BILLING_CYCLE_DAYS,
    CycleRunResult,
    InvoiceCycle,
    ThirtyDayCyclePolicy,
    run_invoice_cycle,
)
from app.services.billing.invoices import Invoices, invoices
from app.services.billing.leases import JobLeases, job_lease, job_leases
from app.services.billing.payments import InvoicePayments, invoice_payments
from app.services.billing.plans import Plans, plans
from app.services.billing.premium import Premium, premium
from app.services.billing.repair import FeeRepair, repair_fee_consistency
from app.services.billing.subscriptions import Subscriptions, subscriptions
from app.services.billing.webhooks import WebhookEvents, webhook_events

__all__ = [
    "BILLING_CYCLE_DAYS",
    "AppFees",
    "Credits",
    "CycleRunResult",
    "FeeRepair",
    "InvoiceCycle",
    "InvoicePayments",
    "Invoices",
    "JobLeases",
    "Plans",
    "Premium",
    "Subscriptions",
    "ThirtyDayCyclePolicy",
    "WebhookEvents",
    "access_block_for_partner",
    "app_fees",
    "credits",
    "evaluate_access_block",
    "invoice_payments",
    "invoices",
    "job_lease",
    "job_leases",
    "plans",
    "premium",
    "repair_fee_consistency",
    "run_invoice_cycle",
    "subscriptions",
    "webhook_events",
]
