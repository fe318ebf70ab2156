"""Tests for the fee consistency repair pass."""

from datetime import UTC, datetime, timedelta

from app.models.billing import AppFee
from app.models.scheduler import JobLease
from app.services.billing.repair import FeeRepair, heal_partner_fees

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_heals_fees_that_point_at_an_invoice(
    db_session, session_factory, partner, make_invoice, make_fee
):
    invoice = make_invoice(partner, 1000, NOW + timedelta(days=7))
    drifted = make_fee(partner, 1000, NOW - timedelta(days=40), invoice_id=invoice.id)
    untouched = make_fee(partner, 300, NOW - timedelta(days=2))

    result = FeeRepair(session_factory).run(now=NOW)

    assert result == {"success": True, "fixed_fees_count": 1}
    db_session.expire_all()
    assert db_session.get(AppFee, drifted.id).settled is True
    fresh = db_session.get(AppFee, untouched.id)
    assert fresh.settled is False
    assert fresh.invoice_id is None


def test_consistent_ledger_needs_no_repair(db_session, session_factory, partner, make_fee):
    make_fee(partner, 300, NOW - timedelta(days=2))
    assert FeeRepair(session_factory).run(now=NOW) == {
        "success": True,
        "fixed_fees_count": 0,
    }


def test_heal_never_unsettles(db_session, partner, make_invoice, make_fee):
    invoice = make_invoice(partner, 1000, NOW)
    settled = make_fee(
        partner, 1000, NOW - timedelta(days=40), invoice_id=invoice.id, settled=True
    )
    assert heal_partner_fees(db_session, partner.id, NOW) == 0
    assert settled.settled is True


def test_repair_counts_across_partners(
    db_session, session_factory, make_partner, make_invoice, make_fee
):
    for _ in range(2):
        p = make_partner()
        invoice = make_invoice(p, 500, NOW)
        make_fee(p, 250, NOW - timedelta(days=35), invoice_id=invoice.id)
        make_fee(p, 250, NOW - timedelta(days=34), invoice_id=invoice.id)

    result = FeeRepair(session_factory).run(now=NOW)

    assert result["fixed_fees_count"] == 4


def test_repair_skips_while_lease_is_held(db_session, session_factory, partner):
    db_session.add(
        JobLease(
            name="fee_repair",
            holder="other",
            acquired_at=datetime.now(UTC),
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )
    )
    db_session.commit()
    assert FeeRepair(session_factory).run(now=NOW) == {
        "success": False,
        "fixed_fees_count": 0,
    }
