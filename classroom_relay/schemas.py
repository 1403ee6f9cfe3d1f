from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import date, datetime

class JobCreate(BaseModel):
    group_ref: str
    message: str
    scheduled_at: datetime
    audience_phones: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    target_date: Optional[date] = None
    target_time: Optional[str] = None
    module_number: Optional[int] = None
    is_broadcast: bool = False

class JobOut(BaseModel):
    id: str
    group_ref: str
    category: Optional[str]
    message: str
    audience_phones: List[str]
    scheduled_at: datetime
    status: str
    target_date: Optional[str]
    target_time: Optional[str]
    module_number: Optional[int]
    is_broadcast: bool
    sent_at: Optional[datetime]
    error: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True

class JobCreated(BaseModel):
    id: str
    scheduled_at: datetime
    status: str

class JobResultOut(BaseModel):
    id: str
    sent: int
    failed: int

class PassReportOut(BaseModel):
    processed: int
    results: List[JobResultOut]
    skipped: bool = False

class PendingSummaryOut(BaseModel):
    pending_count: int
    next_scheduled: Optional[JobOut]

class CancelReminderRequest(BaseModel):
    phone: str
    class_date: date

class CancelledOut(BaseModel):
    cancelled: int

class MalformedNotesOut(BaseModel):
    event_id: str
    problems: List[str]

class RebuildReportOut(BaseModel):
    cancelled: int
    events_scanned: int
    reminders_created: int
    skipped_no_phone: int
    skipped_past: int
    malformed: List[MalformedNotesOut]

class LearnedMatchIn(BaseModel):
    zoom_name: str
    whatsapp_phone: str
    whatsapp_name: Optional[str] = None

class LearnedMatchesIn(BaseModel):
    matches: List[LearnedMatchIn]

class LearnedMatchOut(BaseModel):
    zoom_name: str
    whatsapp_phone: str
    whatsapp_name: Optional[str]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True
