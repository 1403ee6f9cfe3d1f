# classroom_relay/controllers/scheduled_messages.py

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..dependencies import get_db, get_executor
from ..services.notification_scheduler import CancelOutcome, JobValidationError, NotificationScheduler

router = APIRouter(prefix="/scheduled-messages", tags=["scheduled-messages"])


@router.post("/", response_model=schemas.JobCreated)
def schedule_message(payload: schemas.JobCreate, db: Session = Depends(get_db)):
    """
    Queue a message for delivery at ``scheduled_at``.
    """
    try:
        job = NotificationScheduler(db).create(**payload.model_dump())
    except JobValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return schemas.JobCreated(id=job.id, scheduled_at=job.scheduled_at, status=job.status)


@router.get("/", response_model=List[schemas.JobOut])
def list_scheduled_messages(
    group_id: Optional[str] = Query(None, alias="groupId"),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return NotificationScheduler(db).list(group_ref=group_id, status=status)


@router.post("/process", response_model=schemas.PassReportOut)
async def process_due_messages(executor=Depends(get_executor)):
    """
    Run one delivery pass now instead of waiting for the next tick.
    """
    report = await executor.run_pass()
    if report is None:
        return schemas.PassReportOut(processed=0, results=[], skipped=True)
    return schemas.PassReportOut(
        processed=report.processed,
        results=[schemas.JobResultOut(id=r.id, sent=r.sent, failed=r.failed) for r in report.results],
    )


@router.get("/process", response_model=schemas.PendingSummaryOut)
def pending_status(db: Session = Depends(get_db)):
    count, next_up = NotificationScheduler(db).pending_summary()
    return schemas.PendingSummaryOut(
        pending_count=count,
        next_scheduled=schemas.JobOut.model_validate(next_up) if next_up else None,
    )


@router.get("/{job_id}", response_model=schemas.JobOut)
def get_scheduled_message(job_id: str, db: Session = Depends(get_db)):
    job = NotificationScheduler(db).get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Scheduled message not found")
    return job


@router.delete("/{job_id}")
def cancel_scheduled_message(job_id: str, db: Session = Depends(get_db)):
    outcome = NotificationScheduler(db).cancel(job_id)
    if outcome is CancelOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Scheduled message not found")
    if outcome is CancelOutcome.NOT_PENDING:
        raise HTTPException(status_code=409, detail="Can only cancel pending messages")
    return {"success": True}
