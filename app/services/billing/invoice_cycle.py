"""Periodic invoice generation.

Each run walks every partner and, where a billing cycle has elapsed, bundles
the partner's unsettled fees into one invoice. Per partner, the invoice
insert, the fee settlement and the credit consumption are a single
transaction: a partner either ends up with a complete invoice or with no
change at all, and one partner failing never touches another's work.
"""

import enum
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.metrics import (
    CREDITS_APPLIED,
    INVOICE_CYCLE_PARTNER_FAILURES,
    INVOICES_GENERATED,
    JOB_DURATION,
)
from app.models.billing import AppFee, Invoice, PaymentMethod, PaymentStatus
from app.models.partner import Partner
from app.models.types import utcnow
from app.services.billing.credits import credits
from app.services.billing.leases import job_lease

logger = logging.getLogger(__name__)

JOB_NAME = "invoice_cycle"
BILLING_CYCLE_DAYS = 30


class ThirtyDayCyclePolicy:
    """A cycle is due once 30 days have passed since the reference date.

    This is a calendar approximation: months are not 30 days long, so cycle
    boundaries drift against the calendar.
    """

    cycle_days = BILLING_CYCLE_DAYS

    def is_due(self, reference_date: datetime, now: datetime) -> bool:
        return (now - reference_date) / timedelta(days=self.cycle_days) >= 1


class PartnerOutcome(str, enum.Enum):
    created = "created"
    skipped = "skipped"
    failed = "failed"


@dataclass
class CycleRunResult:
    run_id: str
    acquired: bool = True
    partners_seen: int = 0
    invoices_created: int = 0
    skipped: int = 0
    failed: int = 0
    invoice_ids: list[uuid.UUID] = field(default_factory=list)


def earliest_unsettled_fee(db: Session, partner_id: uuid.UUID) -> AppFee | None:
    return (
        db.query(AppFee)
        .filter(AppFee.partner_id == partner_id)
        .filter(AppFee.settled.is_(False))
        .filter(AppFee.invoice_id.is_(None))
        .order_by(AppFee.order_date.asc())
        .first()
    )


def latest_invoice(db: Session, partner_id: uuid.UUID) -> Invoice | None:
    return (
        db.query(Invoice)
        .filter(Invoice.partner_id == partner_id)
        .order_by(Invoice.created_at.desc())
        .first()
    )


class InvoiceCycle:
    def __init__(
        self,
        session_factory=None,
        policy: ThirtyDayCyclePolicy | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.policy = policy or ThirtyDayCyclePolicy()
        self.max_workers = max(1, max_workers or settings.invoice_cycle_workers)

    def generate_for_partner(
        self, db: Session, partner_id: uuid.UUID, now: datetime
    ) -> Invoice | None:
        """Build the partner's invoice inside ``db``'s open transaction.

        Returns None when there is nothing to bill yet. Never commits.
        """
        earliest = earliest_unsettled_fee(db, partner_id)
        if earliest is None:
            return None

        previous = latest_invoice(db, partner_id)
        reference_date = previous.created_at if previous else earliest.order_date
        if not self.policy.is_due(reference_date, now):
            return None

        fees = (
            db.query(AppFee)
            .filter(AppFee.partner_id == partner_id)
            .filter(AppFee.settled.is_(False))
            .filter(AppFee.invoice_id.is_(None))
            .filter(AppFee.order_date >= reference_date)
            .order_by(AppFee.order_date.asc())
            .with_for_update()
            .all()
        )
        if not fees:
            return None

        partner = db.get(Partner, partner_id)
        total_fee_amount = sum(fee.fee_value for fee in fees)
        invoice = Invoice(
            partner_id=partner_id,
            reference_date=reference_date,
            due_date=now + timedelta(days=settings.invoice_due_days),
            created_at=now,
            total_amount=total_fee_amount,
            original_amount=total_fee_amount,
            applied_credits_amount=0,
            applied_credits=[],
            details=[
                {"fee_id": str(fee.id), "order_id": fee.order_id, "value": fee.fee_value}
                for fee in fees
            ],
            partner_info={
                "name": partner.name,
                "email": partner.email,
                "document": partner.document,
            },
            total_orders=len(fees),
            payment_status=PaymentStatus.pending,
        )
        db.add(invoice)
        db.flush()

        for fee in fees:
            fee.settled = True
            fee.invoice_id = invoice.id
            fee.updated_at = now

        applied = credits.apply_to_invoice(
            db, partner_id, invoice.id, total_fee_amount, commit=False, now=now
        )
        invoice.applied_credits_amount = applied["applied_amount"]
        invoice.applied_credits = applied["applied_credits"]
        invoice.total_amount = total_fee_amount - applied["applied_amount"]
        if invoice.total_amount == 0:
            invoice.payment_status = PaymentStatus.paid
            invoice.paid_at = now
            if applied["applied_amount"]:
                invoice.payment_method = PaymentMethod.credits
        db.flush()
        return invoice

    def _bill_partner(
        self, partner_id: uuid.UUID, now: datetime, run_id: str
    ) -> tuple[PartnerOutcome, uuid.UUID | None]:
        log_extra = {"partner_id": partner_id, "job": JOB_NAME, "run_id": run_id}
        session = self._session_factory()
        try:
            invoice = self.generate_for_partner(session, partner_id, now)
            if invoice is None:
                session.rollback()
                return PartnerOutcome.skipped, None
            invoice_id = invoice.id
            applied_amount = invoice.applied_credits_amount
            session.commit()
        except Exception:
            session.rollback()
            INVOICE_CYCLE_PARTNER_FAILURES.inc()
            logger.exception("Invoice generation failed for partner", extra=log_extra)
            return PartnerOutcome.failed, None
        finally:
            session.close()

        INVOICES_GENERATED.inc()
        if applied_amount:
            CREDITS_APPLIED.inc(applied_amount)
        logger.info(
            "Created Invoice: %s", invoice_id, extra={**log_extra, "invoice_id": invoice_id}
        )
        return PartnerOutcome.created, invoice_id

    def _partner_ids(self) -> list[uuid.UUID]:
        session = self._session_factory()
        try:
            return [row[0] for row in session.query(Partner.id).order_by(Partner.id)]
        finally:
            session.close()

    def run(self, now: datetime | None = None) -> CycleRunResult:
        now = now or utcnow()
        run_id = uuid.uuid4().hex
        with job_lease(JOB_NAME, run_id, self._session_factory) as acquired:
            if not acquired:
                logger.warning(
                    "Invoice cycle already running; skipping",
                    extra={"job": JOB_NAME, "run_id": run_id},
                )
                return CycleRunResult(run_id=run_id, acquired=False)
            with JOB_DURATION.labels(JOB_NAME).time():
                result = self._run_partners(now, run_id)
        logger.info(
            "Invoice cycle finished: %s created, %s skipped, %s failed",
            result.invoices_created,
            result.skipped,
            result.failed,
            extra={"job": JOB_NAME, "run_id": run_id},
        )
        return result

    def _run_partners(self, now: datetime, run_id: str) -> CycleRunResult:
        result = CycleRunResult(run_id=run_id)
        partner_ids = self._partner_ids()
        result.partners_seen = len(partner_ids)
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="invoice-cycle"
        ) as pool:
            outcomes = pool.map(
                lambda partner_id: self._bill_partner(partner_id, now, run_id),
                partner_ids,
            )
            for outcome, invoice_id in outcomes:
                if outcome == PartnerOutcome.created:
                    result.invoices_created += 1
                    result.invoice_ids.append(invoice_id)
                elif outcome == PartnerOutcome.failed:
                    result.failed += 1
                else:
                    result.skipped += 1
        return result


def run_invoice_cycle(now: datetime | None = None, **kwargs) -> CycleRunResult:
    return InvoiceCycle(**kwargs).run(now)
