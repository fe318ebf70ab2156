"""Tests for billing model helpers and the UTC timestamp column type."""

from datetime import UTC, datetime, timedelta, timezone

from app.models.billing import AppFee, Invoice, PaymentStatus
from app.models.partner import PREMIUM_FEATURE_KEYS, premium_features
from app.models.types import UTCDateTime

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_invoice_status_is_derived():
    invoice = Invoice(due_date=NOW, payment_status=PaymentStatus.pending)
    assert invoice.status_at(NOW - timedelta(seconds=1)) == PaymentStatus.pending
    assert invoice.status_at(NOW) == PaymentStatus.pending
    assert invoice.status_at(NOW + timedelta(seconds=1)) == PaymentStatus.overdue

    invoice.payment_status = PaymentStatus.paid
    assert invoice.status_at(NOW + timedelta(days=90)) == PaymentStatus.paid


def test_fee_exposes_app_fee_block():
    fee = AppFee(fee_percentage=4.5, fee_value=450, is_premium_rate=True)
    assert fee.app_fee == {"percentage": 4.5, "value": 450, "is_premium_rate": True}


def test_premium_features_toggle_together():
    assert set(premium_features(True)) == set(PREMIUM_FEATURE_KEYS)
    assert all(premium_features(True).values())
    assert not any(premium_features(False).values())


def test_utc_datetime_normalizes_offsets():
    column = UTCDateTime()
    sao_paulo = timezone(timedelta(hours=-3))
    bound = column.process_bind_param(datetime(2026, 3, 1, 9, 0, tzinfo=sao_paulo), None)
    assert bound == NOW
    assert bound.tzinfo == UTC


def test_utc_datetime_tags_naive_values():
    column = UTCDateTime()
    loaded = column.process_result_value(datetime(2026, 3, 1, 12, 0), None)
    assert loaded == NOW
    assert loaded.tzinfo == UTC
    assert column.process_result_value(None, None) is None


def test_timestamps_round_trip_as_utc(db_session, partner, make_fee):
    fee = make_fee(partner, 100, NOW)
    db_session.expire_all()
    loaded = db_session.get(AppFee, fee.id)
    assert loaded.order_date == NOW
    assert loaded.order_date.tzinfo is not None
