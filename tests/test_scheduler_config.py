from __future__ import annotations

import pytest
from celery.schedules import crontab

from app.services import scheduler_config


@pytest.fixture
def clear_scheduler_env(monkeypatch: pytest.MonkeyPatch) -> None:
    keys = (
        "CELERY_BROKER_URL",
        "CELERY_RESULT_BACKEND",
        "CELERY_TIMEZONE",
        "CELERY_BEAT_MAX_LOOP_INTERVAL",
        "BILLING_POLL_INTERVAL_MINUTES",
        "REDIS_URL",
    )
    for key in keys:
        monkeypatch.delenv(key, raising=False)


def test_get_celery_config_defaults(clear_scheduler_env: None) -> None:
    config = scheduler_config.get_celery_config()

    assert config["broker_url"] == "redis://localhost:6379/0"
    assert config["result_backend"] == "redis://localhost:6379/1"
    assert config["timezone"] == "America/Sao_Paulo"
    assert config["enable_utc"] is True
    assert config["task_acks_late"] is True
    assert config["worker_hijack_root_logger"] is False
    assert config["beat_max_loop_interval"] == 5


def test_get_celery_config_env_overrides(
    clear_scheduler_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CELERY_BROKER_URL", "redis://broker.example:6379/2")
    monkeypatch.setenv("REDIS_URL", "redis://fallback.example:6379/9")
    monkeypatch.setenv("CELERY_TIMEZONE", "UTC")
    monkeypatch.setenv("CELERY_BEAT_MAX_LOOP_INTERVAL", "30")

    config = scheduler_config.get_celery_config()

    assert config["broker_url"] == "redis://broker.example:6379/2"
    assert config["result_backend"] == "redis://fallback.example:6379/9"
    assert config["timezone"] == "UTC"
    assert config["beat_max_loop_interval"] == 30


def test_invalid_integer_env_is_ignored(
    clear_scheduler_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CELERY_BEAT_MAX_LOOP_INTERVAL", "soon")
    assert scheduler_config.get_celery_config()["beat_max_loop_interval"] == 5


def test_beat_schedule_covers_billing_jobs(clear_scheduler_env: None) -> None:
    schedule = scheduler_config.build_beat_schedule()

    tasks = {entry["task"] for entry in schedule.values()}
    assert tasks == {
        scheduler_config.GENERATE_INVOICES_TASK,
        scheduler_config.REPAIR_FEES_TASK,
        scheduler_config.POLL_PAYMENTS_TASK,
        scheduler_config.EXPIRE_PREMIUM_TASK,
        scheduler_config.RESOLVE_CARD_CHARGES_TASK,
    }
    assert schedule["billing_generate_invoices"]["schedule"] == crontab(minute=0, hour=0)
    assert schedule["billing_repair_fee_consistency"]["schedule"] == crontab(
        minute=30, hour=0
    )


def test_poll_interval_from_env(
    clear_scheduler_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BILLING_POLL_INTERVAL_MINUTES", "10")
    schedule = scheduler_config.build_beat_schedule()
    assert schedule["billing_poll_pending_payments"]["schedule"] == crontab(minute="*/10")


def test_poll_interval_has_a_floor(
    clear_scheduler_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BILLING_POLL_INTERVAL_MINUTES", "0")
    schedule = scheduler_config.build_beat_schedule()
    assert schedule["billing_poll_pending_payments"]["schedule"] == crontab(minute="*/30")


def test_card_charges_follow_the_poll_interval(
    clear_scheduler_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BILLING_POLL_INTERVAL_MINUTES", "15")
    schedule = scheduler_config.build_beat_schedule()
    assert schedule["billing_resolve_card_charges"]["schedule"] == crontab(minute="*/15")
