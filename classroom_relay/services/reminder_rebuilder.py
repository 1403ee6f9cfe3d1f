"""Full resync of class reminders from the Teamup calendar.

A rebuild cancels every pending reminder of the managed categories and then
regenerates them from the calendar, so running it twice against the same
calendar leaves the same pending set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models import now
from ..utils.notes_parser import ParsedNotes, parse_notes
from ..utils.time_utils import add_months, format_time_12h, parse_calendar_datetime, to_naive_utc, wall_clock
from .calendar_service import CalendarClient, CalendarEvent
from .notification_scheduler import (
    IN_CAR_REMINDERS,
    LEAD_TIMES,
    MANAGED_CATEGORIES,
    TRUCK_CLASSES,
    JobValidationError,
    NotificationScheduler,
)

logger = logging.getLogger(__name__)


class RebuildAborted(Exception):
    def __init__(self, reason: str, cancelled: int):
        super().__init__(reason)
        self.cancelled = cancelled


@dataclass
class MalformedNotes:
    event_id: str
    problems: List[str]


@dataclass
class RebuildReport:
    cancelled: int = 0
    events_scanned: int = 0
    reminders_created: int = 0
    skipped_no_phone: int = 0
    skipped_past: int = 0
    malformed: List[MalformedNotes] = field(default_factory=list)


@dataclass(frozen=True)
class Reminder:
    category: str
    phone: str
    message: str
    scheduled_at: datetime
    target_date: Optional[str] = None
    target_time: Optional[str] = None


def _student_name(parsed: ParsedNotes) -> str:
    return parsed.student or "Student"


def _teacher_suffix(event: CalendarEvent, teachers: Dict[int, str]) -> str:
    full_name = teachers.get(event.teacher_ref) if event.teacher_ref is not None else None
    first = full_name.split(" ")[0] if full_name else ""
    return f" with {first}" if first else ""


def build_message(event: CalendarEvent, parsed: ParsedNotes, teachers: Dict[int, str]) -> str:
    start = format_time_12h(wall_clock(event.start_dt))
    location = f" in {parsed.exam_location}" if parsed.exam_location else ""

    if parsed.is_truck:
        if parsed.is_exam:
            return f"Reminder: You have your Truck Exam today at {start}{location}. Good luck! 🍀"
        number = f" {parsed.class_number}" if parsed.class_number else ""
        return f"Reminder: You have Truck Class{number} today at {start}. See you there!"

    teacher = _teacher_suffix(event, teachers)
    if parsed.is_exam:
        return (
            f"Reminder: Hi {_student_name(parsed)}, your road test{teacher} is in 1 hour "
            f"({start}){location}. Good luck! 🍀"
        )
    # titles look like "Session 5 - StudentName" or "Pre-Trip - StudentName"
    module = event.title.split(" - ")[0].strip() or "class"
    return f"Reminder: Hi {_student_name(parsed)}, your {module} class{teacher} is in 1 hour ({start}). See you soon!"


def plan_reminder(event: CalendarEvent, parsed: ParsedNotes, teachers: Dict[int, str]) -> Optional[Reminder]:
    """The reminder an event calls for, or None when it has no usable phone."""
    if not parsed.phone:
        return None
    category = TRUCK_CLASSES if parsed.is_truck else IN_CAR_REMINDERS
    start = to_naive_utc(parse_calendar_datetime(event.start_dt))
    # the class day as the calendar shows it, not the UTC day
    target_date = event.start_dt[:10]
    target_time = None
    if category == IN_CAR_REMINDERS:
        target_time = f"from {format_time_12h(wall_clock(event.start_dt))} to {format_time_12h(wall_clock(event.end_dt))}"
    return Reminder(
        category=category,
        phone=parsed.phone,
        message=build_message(event, parsed, teachers),
        scheduled_at=start - LEAD_TIMES[category],
        target_date=target_date,
        target_time=target_time,
    )


class ReminderRebuilder:
    def __init__(
        self,
        session_factory: sessionmaker,
        calendar: CalendarClient,
        window_months: int = 3,
        clock: Callable[[], datetime] = now,
    ):
        self.session_factory = session_factory
        self.calendar = calendar
        self.window_months = window_months
        self.clock = clock
        # cancel-then-recreate must never interleave with another rebuild
        self._lock = asyncio.Lock()

    async def rebuild(self) -> RebuildReport:
        async with self._lock:
            db: Session = self.session_factory()
            try:
                return await self._rebuild(db)
            finally:
                db.close()

    async def _rebuild(self, db: Session) -> RebuildReport:
        scheduler = NotificationScheduler(db, clock=self.clock)
        report = RebuildReport()

        report.cancelled = scheduler.cancel_bulk(categories=MANAGED_CATEGORIES)
        logger.info("Cancelled %d pending reminders", report.cancelled)

        try:
            teachers = await self.calendar.list_subcalendars()
        except Exception:
            logger.warning("Teacher names unavailable, reminders will omit them", exc_info=True)
            teachers = {}

        today = self.clock().date()
        try:
            events = await self.calendar.list_events(today, add_months(today, self.window_months))
        except Exception as e:
            logger.error("Calendar fetch failed, rebuild aborted after cancelling %d reminders: %s", report.cancelled, e)
            raise RebuildAborted(f"Calendar fetch failed: {e}", report.cancelled) from e

        report.events_scanned = len(events)
        current = self.clock()
        for event in events:
            parsed = parse_notes(event.notes)
            problems = list(parsed.problems)
            unreadable_time = False
            try:
                reminder = plan_reminder(event, parsed, teachers)
            except ValueError as e:
                problems.append(f"unreadable start/end time: {e}")
                reminder, unreadable_time = None, True
            if problems:
                logger.warning("Event %s is malformed: %s", event.id, "; ".join(problems))
                report.malformed.append(MalformedNotes(event.id, problems))
            if unreadable_time:
                continue

            if reminder is None:
                report.skipped_no_phone += 1
                continue
            if reminder.scheduled_at <= current:
                report.skipped_past += 1
                continue

            try:
                scheduler.create(
                    group_ref=reminder.category,
                    category=reminder.category,
                    message=reminder.message,
                    scheduled_at=reminder.scheduled_at,
                    audience_phones=[reminder.phone],
                    target_date=reminder.target_date,
                    target_time=reminder.target_time,
                    commit=False,
                )
            except JobValidationError:
                report.skipped_past += 1
                continue
            report.reminders_created += 1

        db.commit()
        logger.info("Created %d fresh reminders from %d events", report.reminders_created, report.events_scanned)
        return report
