from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "HTTP requests that ended in a 5xx",
    ["method", "path", "status"],
)

# ── Billing ──────────────────────────────────────────────

INVOICES_GENERATED = Counter(
    "billing_invoices_generated_total",
    "Invoices created by the invoice cycle",
)
INVOICE_CYCLE_PARTNER_FAILURES = Counter(
    "billing_invoice_cycle_partner_failures_total",
    "Partners whose invoice unit of work failed and was rolled back",
)
JOB_DURATION = Histogram(
    "billing_job_duration_seconds",
    "Scheduled billing job duration",
    ["job"],
)
JOB_LEASE_CONFLICTS = Counter(
    "billing_job_lease_conflicts_total",
    "Job runs refused because another run holds the lease",
    ["job"],
)
FEE_DRIFT_REPAIRED = Counter(
    "billing_fee_drift_repaired_total",
    "Fees found with an invoice id but settled=false and healed",
)
CREDITS_APPLIED = Counter(
    "billing_credits_applied_centavos_total",
    "Credit value consumed against invoices, in centavos",
)
GATEWAY_REQUESTS = Counter(
    "billing_gateway_requests_total",
    "Payment gateway calls",
    ["operation", "outcome"],
)
SUBSCRIPTION_PAYMENT_EVENTS = Counter(
    "billing_subscription_payment_events_total",
    "Recurring charge webhook events by status",
    ["status"],
)
WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Gateway webhook deliveries by outcome",
    ["outcome"],
)
