# classroom_relay/controllers/scheduling.py

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import schemas
from ..dependencies import get_calendar, get_db, get_rebuilder
from ..services.calendar_service import CalendarError
from ..services.notification_scheduler import NotificationScheduler, class_date_matcher
from ..services.reminder_rebuilder import RebuildAborted

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


@router.post("/rebuild-reminders", response_model=schemas.RebuildReportOut)
async def rebuild_reminders(rebuilder=Depends(get_rebuilder)):
    """
    Cancel every pending class reminder and recreate them from the calendar.
    """
    try:
        report = await rebuilder.rebuild()
    except RebuildAborted as e:
        raise HTTPException(status_code=502, detail={"error": str(e), "cancelled": e.cancelled})
    return schemas.RebuildReportOut(
        cancelled=report.cancelled,
        events_scanned=report.events_scanned,
        reminders_created=report.reminders_created,
        skipped_no_phone=report.skipped_no_phone,
        skipped_past=report.skipped_past,
        malformed=[schemas.MalformedNotesOut(event_id=m.event_id, problems=m.problems) for m in report.malformed],
    )


def _cancel_class_reminders(db: Session, phone: str, class_date: date) -> int:
    cancelled = NotificationScheduler(db).cancel_bulk(class_date_matcher(phone, class_date))
    logger.info("Cancelled %d reminders for %s on %s", cancelled, phone, class_date)
    return cancelled


@router.post("/cancel-reminder", response_model=schemas.CancelledOut)
def cancel_reminder(payload: schemas.CancelReminderRequest, db: Session = Depends(get_db)):
    """
    Drop the pending reminders of one student's class, e.g. when the class is edited.
    """
    return schemas.CancelledOut(cancelled=_cancel_class_reminders(db, payload.phone, payload.class_date))


@router.delete("/events/{event_id}", response_model=schemas.CancelledOut)
async def delete_class(
    event_id: str,
    phone: Optional[str] = None,
    class_date: Optional[date] = None,
    db: Session = Depends(get_db),
    calendar=Depends(get_calendar),
):
    """
    Delete a class from the calendar together with its pending reminders.
    """
    try:
        await calendar.delete_event(event_id)
    except CalendarError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not (phone and class_date):
        return schemas.CancelledOut(cancelled=0)
    return schemas.CancelledOut(cancelled=_cancel_class_reminders(db, phone, class_date))
