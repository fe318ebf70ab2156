import logging
import os

from celery.schedules import crontab

from app.config import settings

logger = logging.getLogger(__name__)

GENERATE_INVOICES_TASK = "billing.generate_invoices"
REPAIR_FEES_TASK = "billing.repair_fee_consistency"
POLL_PAYMENTS_TASK = "billing.poll_pending_payments"
EXPIRE_PREMIUM_TASK = "billing.expire_lapsed_premium"
RESOLVE_CARD_CHARGES_TASK = "billing.resolve_card_charges"


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def get_celery_config() -> dict:
    broker = _env_value("CELERY_BROKER_URL") or settings.redis_url
    backend = _env_value("CELERY_RESULT_BACKEND") or _env_value("REDIS_URL")
    timezone = _env_value("CELERY_TIMEZONE") or settings.billing_timezone
    config = {
        "broker_url": broker,
        "result_backend": backend or "redis://localhost:6379/1",
        "timezone": timezone,
        "enable_utc": True,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        # Keep the JSON formatter installed by configure_logging().
        "worker_hijack_root_logger": False,
    }
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5
    return config


def build_beat_schedule() -> dict:
    """Billing beat entries; crontab times are read in the Celery timezone."""
    poll_minutes = max(_env_int("BILLING_POLL_INTERVAL_MINUTES") or 30, 1)
    return {
        "billing_generate_invoices": {
            "task": GENERATE_INVOICES_TASK,
            "schedule": crontab(minute=0, hour=0),
        },
        "billing_repair_fee_consistency": {
            "task": REPAIR_FEES_TASK,
            "schedule": crontab(minute=30, hour=0),
        },
        "billing_poll_pending_payments": {
            "task": POLL_PAYMENTS_TASK,
            "schedule": crontab(minute=f"*/{poll_minutes}"),
        },
        "billing_resolve_card_charges": {
            "task": RESOLVE_CARD_CHARGES_TASK,
            "schedule": crontab(minute=f"*/{poll_minutes}"),
        },
        "billing_expire_lapsed_premium": {
            "task": EXPIRE_PREMIUM_TASK,
            "schedule": crontab(minute=0, hour=1),
        },
    }
