"""Tests for overdue-invoice access blocking."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
import uuid

import pytest

from app.errors import NotFoundError
from app.models.billing import PaymentStatus
from app.services.billing import access as access_module
from app.services.billing.access import access_block_for_partner, evaluate_access_block

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=UTC)


def _invoice(days_past_due: float, status=PaymentStatus.pending, total=1000):
    return SimpleNamespace(
        id=uuid.uuid4(),
        due_date=NOW - timedelta(days=days_past_due),
        total_amount=total,
        payment_status=status,
    )


def test_no_invoices_means_no_block():
    status = evaluate_access_block([], NOW)
    assert status["severity"] == "none"
    assert status["is_blocked"] is False
    assert status["overdue_invoice"] is None


def test_invoice_not_yet_due_is_ignored():
    status = evaluate_access_block([_invoice(-2)], NOW)
    assert status["has_overdue_invoice"] is False


def test_paid_invoice_is_ignored():
    status = evaluate_access_block([_invoice(30, PaymentStatus.paid)], NOW)
    assert status["has_overdue_invoice"] is False


def test_recently_overdue_is_a_warning():
    status = evaluate_access_block([_invoice(3)], NOW)
    assert status["has_overdue_invoice"] is True
    assert status["days_past_due"] == 3
    assert status["severity"] == "warning"
    assert status["is_blocked"] is False
    assert "7 days" in status["blocking_message"]


@pytest.mark.parametrize(
    ("days", "severity", "blocked"),
    [
        (6, "warning", False),
        (7, "blocked", False),
        (8, "blocked", True),
        (14, "blocked", True),
        (15, "suspended", True),
        (40, "suspended", True),
    ],
)
def test_thresholds(days, severity, blocked):
    status = evaluate_access_block([_invoice(days)], NOW)
    assert status["severity"] == severity
    assert status["is_blocked"] is blocked


def test_partial_days_round_down():
    status = evaluate_access_block([_invoice(7.9)], NOW)
    assert status["days_past_due"] == 7


def test_oldest_overdue_invoice_wins():
    recent = _invoice(2, total=500)
    oldest = _invoice(20, total=900)
    status = evaluate_access_block([recent, oldest, _invoice(9)], NOW)
    assert status["overdue_invoice"]["id"] == oldest.id
    assert status["overdue_invoice"]["total_amount"] == 900
    assert status["severity"] == "suspended"


def test_access_block_for_partner(db_session, partner, other_partner, make_invoice):
    make_invoice(partner, 2500, NOW - timedelta(days=10))
    make_invoice(other_partner, 9900, NOW - timedelta(days=30))

    status = access_block_for_partner(db_session, partner.id, NOW)

    assert status["days_past_due"] == 10
    assert status["overdue_invoice"]["total_amount"] == 2500
    assert status["is_blocked"] is True


def test_access_block_for_unknown_partner(db_session):
    with pytest.raises(NotFoundError):
        access_block_for_partner(db_session, uuid.uuid4(), NOW)


# ── Push feed ────────────────────────────────────────────


def test_notify_without_subscribers_is_a_noop(partner):
    assert access_module.notify_partner(partner.id) is False


def test_committed_invoice_change_notifies_partner(
    db_session, partner, make_invoice, monkeypatch
):
    notified = []
    monkeypatch.setattr(access_module, "notify_partner", notified.append)

    invoice = make_invoice(partner, 1000, NOW)
    assert notified == [partner.id]

    invoice.payment_status = PaymentStatus.paid
    db_session.commit()
    assert notified == [partner.id, partner.id]


def test_rolled_back_change_is_not_pushed(db_session, partner, make_invoice, monkeypatch):
    invoice = make_invoice(partner, 1000, NOW)
    notified = []
    monkeypatch.setattr(access_module, "notify_partner", notified.append)

    invoice.total_amount = 1
    db_session.flush()
    db_session.rollback()
    db_session.commit()

    assert notified == []


def test_compute_payload(partner, make_invoice, session_factory):
    make_invoice(partner, 1000, datetime.now(UTC) - timedelta(days=2))
    payload = access_module._compute_payload(partner.id, session_factory)
    assert payload["type"] == "access_block"
    assert payload["data"]["severity"] == "warning"
    assert payload["data"]["days_past_due"] == 2
