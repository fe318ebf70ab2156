import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.metrics import FEE_DRIFT_REPAIRED, JOB_DURATION
from app.models.billing import AppFee
from app.models.partner import Partner
from app.models.types import utcnow
from app.services.billing.leases import job_lease

logger = logging.getLogger(__name__)

JOB_NAME = "fee_repair"


def heal_partner_fees(db: Session, partner_id: uuid.UUID, now: datetime) -> int:
    """Settle fees that already point at an invoice but were left unsettled.

    Only ever moves a fee toward settled; fees without an invoice are left
    alone.
    """
    drifted = (
        db.query(AppFee)
        .filter(AppFee.partner_id == partner_id)
        .filter(AppFee.settled.is_(False))
        .filter(AppFee.invoice_id.is_not(None))
        .all()
    )
    for fee in drifted:
        fee.settled = True
        fee.updated_at = now
    return len(drifted)


class FeeRepair:
    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or SessionLocal

    def run(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        run_id = uuid.uuid4().hex
        log_extra = {"job": JOB_NAME, "run_id": run_id}
        with job_lease(JOB_NAME, run_id, self._session_factory) as acquired:
            if not acquired:
                logger.warning("Fee repair already running; skipping", extra=log_extra)
                return {"success": False, "fixed_fees_count": 0}
            with JOB_DURATION.labels(JOB_NAME).time():
                fixed, success = self._repair_all(now, log_extra)
        logger.info("Fee repair healed %s fees", fixed, extra=log_extra)
        return {"success": success, "fixed_fees_count": fixed}

    def _repair_all(self, now: datetime, log_extra: dict) -> tuple[int, bool]:
        fixed = 0
        success = True
        session = self._session_factory()
        try:
            partner_ids = [row[0] for row in session.query(Partner.id).order_by(Partner.id)]
            for partner_id in partner_ids:
                try:
                    healed = heal_partner_fees(session, partner_id, now)
                    session.commit()
                except Exception:
                    session.rollback()
                    success = False
                    logger.exception(
                        "Fee repair failed for partner",
                        extra={**log_extra, "partner_id": partner_id},
                    )
                    continue
                if healed:
                    FEE_DRIFT_REPAIRED.inc(healed)
                    logger.warning(
                        "Healed %s drifted fees",
                        healed,
                        extra={**log_extra, "partner_id": partner_id},
                    )
                fixed += healed
        finally:
            session.close()
        return fixed, success


def repair_fee_consistency(now: datetime | None = None, **kwargs) -> dict:
    return FeeRepair(**kwargs).run(now)
