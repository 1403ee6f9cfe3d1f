"""Durable store of scheduled WhatsApp messages.

Jobs are never deleted; every change is a status transition checked against
``JobStatus``. Writes go through the SQLAlchemy session passed in, and rely on
the database for atomicity.
"""

import enum
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models import InvalidTransition, JobStatus, NotificationJob, now
from ..utils.time_utils import to_naive_utc

logger = logging.getLogger(__name__)

IN_CAR_REMINDERS = "in-car-reminders"
TRUCK_CLASSES = "truck-classes"

# reminder category -> how long before the class the reminder goes out
LEAD_TIMES = {
    IN_CAR_REMINDERS: timedelta(hours=1),
    TRUCK_CLASSES: timedelta(hours=6),
}
MANAGED_CATEGORIES = tuple(LEAD_TIMES)


class JobValidationError(ValueError):
    pass


class CancelOutcome(str, enum.Enum):
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    NOT_PENDING = "not_pending"


JobPredicate = Callable[[NotificationJob], bool]


class NotificationScheduler:
    def __init__(self, db: Session, clock: Callable[[], datetime] = now):
        self.db = db
        self.clock = clock

    def create(
        self,
        group_ref: str,
        message: str,
        scheduled_at: datetime,
        audience_phones: Iterable[str] = (),
        category: Optional[str] = None,
        target_date: Optional[date] = None,
        target_time: Optional[str] = None,
        module_number: Optional[int] = None,
        is_broadcast: bool = False,
        commit: bool = True,
    ) -> NotificationJob:
        scheduled_at = to_naive_utc(scheduled_at)
        phones = [str(p) for p in audience_phones]
        if not group_ref:
            raise JobValidationError("group_ref is required")
        if not message or not message.strip():
            raise JobValidationError("message is required")
        if not is_broadcast and not phones:
            raise JobValidationError("audience_phones must not be empty")
        if scheduled_at <= self.clock():
            raise JobValidationError("Scheduled time must be in the future")

        job = NotificationJob(
            group_ref=group_ref,
            category=category,
            message=message,
            scheduled_at=scheduled_at,
            status=JobStatus.PENDING.value,
            target_date=target_date.isoformat() if isinstance(target_date, date) else target_date,
            target_time=target_time,
            module_number=module_number,
            is_broadcast=is_broadcast,
        )
        job.audience_phones = phones
        self.db.add(job)
        if commit:
            self.db.commit()
            self.db.refresh(job)
        else:
            self.db.flush()
        return job

    def get(self, job_id: str) -> Optional[NotificationJob]:
        return self.db.get(NotificationJob, job_id)

    def list(self, group_ref: Optional[str] = None, status: Optional[str] = None) -> List[NotificationJob]:
        q = self.db.query(NotificationJob)
        if group_ref:
            q = q.filter(NotificationJob.group_ref == group_ref)
        if status:
            q = q.filter(NotificationJob.status == status)
        return q.order_by(NotificationJob.scheduled_at.asc()).all()

    def due(self, at: Optional[datetime] = None) -> List[NotificationJob]:
        at = at or self.clock()
        return (
            self.db.query(NotificationJob)
            .filter(NotificationJob.status == JobStatus.PENDING.value, NotificationJob.scheduled_at <= at)
            .order_by(NotificationJob.scheduled_at.asc())
            .all()
        )

    def pending_summary(self):
        q = self.db.query(NotificationJob).filter(NotificationJob.status == JobStatus.PENDING.value)
        return q.count(), q.order_by(NotificationJob.scheduled_at.asc()).first()

    def _finish(self, job_ids: List[str], target: JobStatus, **values) -> int:
        """Move jobs out of ``pending`` in one conditional UPDATE; returns how many moved.

        Rows another session already moved are left as they are.
        """
        if not JobStatus.PENDING.can_transition_to(target):
            raise InvalidTransition(", ".join(job_ids), JobStatus.PENDING, target)
        if not job_ids:
            return 0
        result = self.db.execute(
            update(NotificationJob)
            .where(NotificationJob.id.in_(job_ids), NotificationJob.status == JobStatus.PENDING.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def cancel(self, job_id: str) -> CancelOutcome:
        job = self.get(job_id)
        if job is None:
            return CancelOutcome.NOT_FOUND
        cancelled = self._finish([job_id], JobStatus.CANCELLED)
        self.db.commit()
        if not cancelled:
            return CancelOutcome.NOT_PENDING
        logger.info("Cancelled scheduled message %s", job_id)
        return CancelOutcome.CANCELLED

    def cancel_bulk(self, predicate: Optional[JobPredicate] = None, categories: Optional[Iterable[str]] = None, commit: bool = True) -> int:
        q = self.db.query(NotificationJob).filter(NotificationJob.status == JobStatus.PENDING.value)
        if categories is not None:
            q = q.filter(NotificationJob.category.in_(list(categories)))
        ids = [job.id for job in q.all() if predicate is None or predicate(job)]
        cancelled = self._finish(ids, JobStatus.CANCELLED)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return cancelled

    def mark_outcome(self, job: NotificationJob, sent: int, errors: List[str]) -> JobStatus:
        """Record a delivery outcome; returns the status the job ends up in.

        A job cancelled while it was being sent stays cancelled.
        """
        target = JobStatus.FAILED if errors and sent == 0 else JobStatus.SENT
        recorded = self._finish(
            [job.id], target, sent_at=self.clock(), error="; ".join(errors) if errors else None
        )
        self.db.commit()
        if not recorded:
            logger.warning("Scheduled message %s is %s, dropping its %s outcome", job.id, job.status, target.value)
            return job.job_status
        return target


def class_date_matcher(phone: str, class_date: date) -> JobPredicate:
    """Pending jobs reminding ``phone`` about a class on ``class_date``.

    Rows written without a target date fall back to their category's lead
    time: the class instant is ``scheduled_at + lead`` and must fall on that
    UTC day.
    """
    day = class_date.isoformat()
    day_start = datetime.combine(class_date, time.min)
    day_end = datetime.combine(class_date, time.max)

    def matches(job: NotificationJob) -> bool:
        if phone not in job.audience_phones:
            return False
        if job.target_date:
            return job.target_date == day
        lead = LEAD_TIMES.get(job.category or job.group_ref)
        if lead is None:
            return False
        return day_start <= job.scheduled_at + lead <= day_end

    return matches
