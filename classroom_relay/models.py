import enum
import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from .database import Base


def now():
    """Current instant as naive UTC, the form every timestamp is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return str(uuid4())


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.SENT, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.SENT: set(),
    JobStatus.FAILED: set(),
    JobStatus.CANCELLED: set(),
}


class InvalidTransition(Exception):
    def __init__(self, job_id: str, current: JobStatus, target: JobStatus):
        super().__init__(f"Job {job_id}: cannot move from {current.value} to {target.value}")
        self.job_id = job_id
        self.current = current
        self.target = target


class NotificationJob(Base):
    __tablename__ = "scheduled_messages"
    id             = Column(String, primary_key=True, index=True, default=new_id)
    group_ref      = Column(String, nullable=False, index=True)
    category       = Column(String, nullable=True, index=True)
    message        = Column(Text, nullable=False)
    audience_json  = Column("member_phones", Text, nullable=False, default="[]")
    scheduled_at   = Column(DateTime, nullable=False, index=True)
    status         = Column(String, nullable=False, default=JobStatus.PENDING.value, index=True)
    target_date    = Column(String, nullable=True, index=True)   # "YYYY-MM-DD"
    target_time    = Column(String, nullable=True)
    module_number  = Column(Integer, nullable=True)
    is_broadcast   = Column(Boolean, nullable=False, default=False)
    sent_at        = Column(DateTime, nullable=True)
    error          = Column(Text, nullable=True)
    created_at     = Column(DateTime, default=now)

    @property
    def audience_phones(self) -> list:
        try:
            return list(json.loads(self.audience_json or "[]"))
        except ValueError:
            return []

    @audience_phones.setter
    def audience_phones(self, phones) -> None:
        self.audience_json = json.dumps(list(phones))

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)


class LearnedMatch(Base):
    __tablename__ = "zoom_name_matches"
    __table_args__ = (UniqueConstraint("zoom_name", "whatsapp_phone", name="uq_zoom_name_phone"),)
    id             = Column(Integer, primary_key=True, autoincrement=True)
    zoom_name      = Column(String, nullable=False, index=True)
    whatsapp_phone = Column(String, nullable=False)
    whatsapp_name  = Column(String, nullable=True)
    updated_at     = Column(DateTime, default=now, onupdate=now)
