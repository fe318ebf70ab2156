from app.models.partner import (  # noqa: F401
    PREMIUM_FEATURE_KEYS,
    Partner,
    PremiumSource,
)
from app.models.scheduler import JobLease  # noqa: F401
from app.models.billing import (  # noqa: F401
    AppFee,
    Credit,
    CreditStatus,
    FrequencyType,
    Invoice,
    InvoiceCharge,
    PaymentMethod,
    PaymentStatus,
    Plan,
    SavedCard,
    Subscription,
    SubscriptionPayment,
    SubscriptionStatus,
    WebhookEvent,
    WebhookEventStatus,
)
