import logging
from typing import Optional, Tuple

from ..utils.webhook_security import challenge_response, verify_signature
from .live_state import LiveStateMachine, Participant

logger = logging.getLogger(__name__)

URL_VALIDATION = "endpoint.url_validation"
OK = {"status": "ok"}


class WebhookIngestor:
    """Validates Zoom webhook envelopes and routes meeting events to the state machine."""

    def __init__(self, secret: Optional[str], live_state: LiveStateMachine):
        self.secret = secret
        self.live_state = live_state

    def handle(self, body: dict, timestamp: Optional[str], signature: Optional[str]) -> Tuple[int, dict]:
        try:
            event = body.get("event")
            if event == URL_VALIDATION:
                return self._validate_endpoint(body)

            if not self.secret:
                logger.error("ZOOM_WEBHOOK_SECRET_TOKEN not set, dropping %s", event)
                return 401, {"error": "Webhook secret not configured"}
            if not verify_signature(self.secret, timestamp, signature, body):
                logger.error("Invalid signature on %s", event)
                return 401, {"error": "Invalid signature"}

            logger.info("Received event: %s", event)
            self.dispatch(event, body.get("payload") or {})
        except Exception:
            # Zoom retries on anything but a quick 200
            logger.exception("Webhook processing failed")
        return 200, OK

    def _validate_endpoint(self, body: dict) -> Tuple[int, dict]:
        if not self.secret:
            logger.error("ZOOM_WEBHOOK_SECRET_TOKEN not set")
            return 500, {"error": "Secret token not configured"}
        plain_token = (body.get("payload") or {}).get("plainToken", "")
        return 200, challenge_response(self.secret, plain_token)

    def dispatch(self, event: Optional[str], payload: dict) -> None:
        obj = payload.get("object") or {}
        if event == "meeting.started":
            self.live_state.on_session_started(
                str(obj.get("id", "")), obj.get("uuid"), obj.get("topic"), obj.get("start_time")
            )
        elif event == "meeting.ended":
            self.live_state.on_session_ended()
        elif event == "meeting.participant_joined":
            self.live_state.on_participant_joined(
                _participant(obj.get("participant") or {}),
                session_id=str(obj["id"]) if obj.get("id") is not None else None,
                instance_id=obj.get("uuid"),
            )
        elif event == "meeting.participant_left":
            participant = obj.get("participant") or {}
            self.live_state.on_participant_left(str(participant.get("user_id", "")))
        else:
            logger.info("Unhandled event: %s", event)


def _participant(data: dict) -> Participant:
    kwargs = {
        "participant_id": str(data.get("user_id", "")),
        "display_name": data.get("user_name") or "Unknown",
        "owner_marker": data.get("email") or None,
    }
    if data.get("join_time"):
        kwargs["join_time"] = data["join_time"]
    return Participant(**kwargs)
