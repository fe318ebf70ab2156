import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.metrics import JOB_LEASE_CONFLICTS
from app.models.scheduler import JobLease
from app.models.types import utcnow

logger = logging.getLogger(__name__)


class JobLeases:
    @staticmethod
    def acquire(
        db: Session,
        name: str,
        holder: str,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Take the named lease, or take over one whose holder let it expire."""
        now = now or utcnow()
        expires_at = now + timedelta(
            seconds=ttl_seconds or settings.job_lease_ttl_seconds
        )
        taken = (
            db.query(JobLease)
            .filter(JobLease.name == name)
            .filter(JobLease.expires_at < now)
            .update(
                {"holder": holder, "acquired_at": now, "expires_at": expires_at},
                synchronize_session=False,
            )
        )
        if taken:
            db.commit()
            logger.warning("Took over expired lease %s", name, extra={"job": name})
            return True
        db.add(JobLease(name=name, holder=holder, acquired_at=now, expires_at=expires_at))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            JOB_LEASE_CONFLICTS.labels(name).inc()
            logger.info(
                "Lease %s is held by another run", name, extra={"job": name, "run_id": holder}
            )
            return False
        return True

    @staticmethod
    def release(db: Session, name: str, holder: str) -> None:
        db.query(JobLease).filter(JobLease.name == name).filter(
            JobLease.holder == holder
        ).delete(synchronize_session=False)
        db.commit()


job_leases = JobLeases()


@contextmanager
def job_lease(name: str, holder: str, session_factory=None) -> Iterator[bool]:
    """Hold ``name`` for the duration of the block; yields whether it was acquired."""
    factory = session_factory or SessionLocal
    session = factory()
    try:
        acquired = job_leases.acquire(session, name, holder)
        try:
            yield acquired
        finally:
            if acquired:
                job_leases.release(session, name, holder)
    finally:
        session.close()
