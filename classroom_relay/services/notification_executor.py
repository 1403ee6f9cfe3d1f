import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models import JobStatus, NotificationJob, now
from .messaging_service import MessagingClient
from .notification_scheduler import NotificationScheduler

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    id: str
    sent: int
    failed: int
    status: str


@dataclass
class PassReport:
    processed: int = 0
    results: List[JobResult] = field(default_factory=list)


class NotificationExecutor:
    """Delivers due scheduled messages, one pass at a time.

    Recipients of a job are messaged one after another with ``send_delay``
    seconds between them; the WhatsApp side rate-limits bursts.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        messenger: MessagingClient,
        send_delay: float = 1.5,
        clock: Callable[[], datetime] = now,
    ):
        self.session_factory = session_factory
        self.messenger = messenger
        self.send_delay = send_delay
        self.clock = clock
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def tick(self) -> None:
        """Scheduler entry point; errors are logged and the next tick tries again."""
        try:
            report = await self.run_pass()
        except Exception:
            logger.exception("Scheduled message pass failed")
            return
        if report is not None and report.processed:
            logger.info("Processed %d scheduled messages", report.processed)

    async def run_pass(self) -> Optional[PassReport]:
        if self.running:
            logger.debug("Previous pass still running, skipping")
            return None
        async with self._lock:
            db: Session = self.session_factory()
            try:
                return await self._process_due(db)
            finally:
                db.close()

    async def _process_due(self, db: Session) -> PassReport:
        scheduler = NotificationScheduler(db, clock=self.clock)
        report = PassReport()
        for job in scheduler.due():
            db.refresh(job)
            if job.job_status is not JobStatus.PENDING:
                # cancelled while an earlier job of this pass was sending
                continue
            sent, errors = await self._deliver(job)
            status = scheduler.mark_outcome(job, sent, errors)
            report.processed += 1
            report.results.append(JobResult(job.id, sent, len(errors), status.value))
            if errors:
                logger.warning("Scheduled message %s: %d sent, %d failed", job.id, sent, len(errors))
        return report

    async def _deliver(self, job: NotificationJob):
        sent = 0
        errors: List[str] = []

        if job.is_broadcast:
            try:
                await self.messenger.send_to_group(job.group_ref, job.message)
                sent = 1
            except Exception as e:
                errors.append(f"Group: {str(e) or 'Unknown error'}")
            return sent, errors

        phones = job.audience_phones
        for i, phone in enumerate(phones):
            if i and self.send_delay:
                await asyncio.sleep(self.send_delay)
            try:
                await self.messenger.send(phone, job.message)
                sent += 1
            except Exception as e:
                errors.append(f"{phone}: {str(e) or 'Unknown error'}")
        return sent, errors
