from celery import Celery
from celery.signals import worker_process_init

from app.logging import configure_logging
from app.services.scheduler_config import build_beat_schedule, get_celery_config
from app.telemetry import setup_worker_otel

configure_logging()

celery_app = Celery("partner_billing", include=["app.tasks.billing"])
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()


@worker_process_init.connect(weak=False)
def init_worker_tracing(*args, **kwargs) -> None:
    # Span exporters do not survive the prefork, so each child sets up its own.
    setup_worker_otel()
