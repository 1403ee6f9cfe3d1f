# classroom_relay/controllers/zoom.py

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from .. import config, models, schemas
from ..dependencies import get_db, get_hub, get_ingestor, get_live_state, get_roster
from ..services.roster_service import load_expected_attendees, load_learned_identities
from ..services.zoom_service import get_meeting_details

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/zoom", tags=["zoom"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/webhook")
async def zoom_webhook(request: Request, ingestor=Depends(get_ingestor)):
    """
    Zoom event notifications. Always answers fast; failures are only logged.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.error("Webhook body is not JSON")
        return {"status": "ok"}
    status_code, payload = ingestor.handle(
        body,
        request.headers.get("x-zm-request-timestamp"),
        request.headers.get("x-zm-signature"),
    )
    return JSONResponse(payload, status_code=status_code)


@router.get("/live-state")
def live_state_snapshot(live_state=Depends(get_live_state)):
    return live_state.snapshot().to_dict()


@router.get("/live-meeting")
async def live_meeting(
    meeting_id: Optional[str] = Query(None, alias="meetingId"),
    live_state=Depends(get_live_state),
):
    """
    Webhook-fed state first, then the Zoom API.
    """
    meeting_id = meeting_id or config.ZOOM_DEFAULT_MEETING_ID
    snap = live_state.snapshot()
    store_view = {
        "isLive": True,
        "meetingId": snap.session_id,
        "topic": snap.topic,
        "startTime": snap.start_time,
        "participantCount": snap.participant_count,
        "source": "webhook",
    }
    if snap.is_live and (not meeting_id or snap.session_id == meeting_id):
        return store_view
    if not meeting_id:
        return {"isLive": False, "meetingId": None, "source": "webhook"}

    try:
        details = await get_meeting_details(meeting_id)
    except Exception as e:
        logger.error("Zoom meeting lookup failed: %s", e)
        if snap.is_live:
            return store_view
        return {"isLive": False, "meetingId": meeting_id, "error": str(e) or "Failed to check meeting status"}

    return {
        "isLive": details.get("status") == "started",
        "meetingId": str(details.get("id", meeting_id)),
        "topic": details.get("topic"),
        "startTime": details.get("start_time"),
        "status": details.get("status"),
        "source": "api",
    }


@router.get("/live-stream")
async def live_stream(
    request: Request,
    group_id: Optional[str] = Query(None, alias="groupId"),
    db: Session = Depends(get_db),
    hub=Depends(get_hub),
    live_state=Depends(get_live_state),
    roster=Depends(get_roster),
):
    """
    Server-sent events: one JSON frame per meeting change plus keepalives.
    """
    # loaded once for the lifetime of this stream
    expected = await load_expected_attendees(roster, group_id)
    learned = load_learned_identities(db) if group_id else []

    subscription = hub.subscribe(expected, learned)
    subscription.push_state(live_state.snapshot())

    async def event_stream():
        try:
            while not await request.is_disconnected():
                yield await subscription.next_frame()
        finally:
            subscription.close()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=STREAM_HEADERS)


@router.get("/learned-matches", response_model=List[schemas.LearnedMatchOut])
def list_learned_matches(db: Session = Depends(get_db)):
    return db.query(models.LearnedMatch).order_by(models.LearnedMatch.updated_at.desc()).all()


@router.post("/learned-matches")
def save_learned_matches(payload: schemas.LearnedMatchesIn, db: Session = Depends(get_db)):
    if not payload.matches:
        raise HTTPException(status_code=400, detail="No matches provided")

    saved = 0
    for match in payload.matches:
        if not match.zoom_name or not match.whatsapp_phone:
            continue
        row = (
            db.query(models.LearnedMatch)
            .filter(
                models.LearnedMatch.zoom_name == match.zoom_name,
                models.LearnedMatch.whatsapp_phone == match.whatsapp_phone,
            )
            .first()
        )
        if row is None:
            row = models.LearnedMatch(zoom_name=match.zoom_name, whatsapp_phone=match.whatsapp_phone)
            db.add(row)
        row.whatsapp_name = match.whatsapp_name
        row.updated_at = models.now()
        saved += 1
    db.commit()

    logger.info("Saved %d learned matches", saved)
    return {"success": True, "saved": saved}
