"""In-memory state of the single live Zoom meeting, fed by webhooks.

One ``LiveStateMachine`` is built at startup and shared through ``app.state``;
tests build as many independent instances as they need.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "Zoom Meeting"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Participant:
    participant_id: str
    display_name: str = "Unknown"
    join_time: str = field(default_factory=_iso_now)
    owner_marker: Optional[str] = None

    @property
    def is_owner(self) -> bool:
        return bool(self.owner_marker)


@dataclass
class LiveSessionState:
    session_id: str
    session_instance_id: Optional[str]
    topic: str
    start_time: str
    is_live: bool = True
    roster: Dict[str, Participant] = field(default_factory=dict)


@dataclass(frozen=True)
class LiveSnapshot:
    is_live: bool = False
    session_id: Optional[str] = None
    session_instance_id: Optional[str] = None
    topic: Optional[str] = None
    start_time: Optional[str] = None
    participants: Tuple[Participant, ...] = ()

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def to_dict(self) -> dict:
        return {
            "isLive": self.is_live,
            "meetingId": self.session_id,
            "meetingUUID": self.session_instance_id,
            "topic": self.topic,
            "startTime": self.start_time,
            "participantCount": self.participant_count,
            "participants": [
                {"user_id": p.participant_id, "user_name": p.display_name, "join_time": p.join_time}
                for p in self.participants
            ],
        }


class LiveStateMachine:
    """NoSession -> Live -> Ended(grace) -> NoSession."""

    def __init__(self, grace_seconds: float = 60.0, on_change: Optional[Callable[[LiveSnapshot], None]] = None):
        self.grace_seconds = grace_seconds
        self._on_change = on_change
        self._state: Optional[LiveSessionState] = None
        self._clear_handle: Optional[asyncio.TimerHandle] = None

    def snapshot(self) -> LiveSnapshot:
        s = self._state
        if s is None:
            return LiveSnapshot()
        return LiveSnapshot(
            is_live=s.is_live,
            session_id=s.session_id,
            session_instance_id=s.session_instance_id,
            topic=s.topic,
            start_time=s.start_time,
            participants=tuple(s.roster.values()),
        )

    # ─── Transitions ─────────────────────────────────────────────────────────

    def on_session_started(self, session_id: str, instance_id: Optional[str], topic: Optional[str], start_time: Optional[str]) -> None:
        # last writer wins: a start while already live means we missed the end event
        self._cancel_clear()
        self._state = LiveSessionState(
            session_id=str(session_id),
            session_instance_id=instance_id,
            topic=topic or DEFAULT_TOPIC,
            start_time=start_time or _iso_now(),
        )
        logger.info("Meeting started: %s (%s)", self._state.topic, self._state.session_id)
        self._notify()

    def on_participant_joined(self, participant: Participant, session_id: Optional[str] = None, instance_id: Optional[str] = None) -> None:
        changed = False
        # start and join webhooks may arrive out of order
        if self._needs_synthesised_session(session_id):
            self._cancel_clear()
            self._state = LiveSessionState(
                session_id=str(session_id) if session_id is not None else "",
                session_instance_id=instance_id,
                topic=DEFAULT_TOPIC,
                start_time=_iso_now(),
            )
            changed = True

        if participant.is_owner:
            logger.info("Skipping host/licensed user: %s (%s)", participant.display_name, participant.owner_marker)
        else:
            self._state.roster[participant.participant_id] = replace(participant, owner_marker=None)
            logger.info("Participant joined: %s (%d total)", participant.display_name, len(self._state.roster))
            changed = True

        if changed:
            self._notify()

    def on_participant_left(self, participant_id: str) -> None:
        if self._state is None or participant_id not in self._state.roster:
            return
        left = self._state.roster.pop(participant_id)
        logger.info("Participant left: %s (%d remaining)", left.display_name, len(self._state.roster))
        self._notify()

    def on_session_ended(self) -> None:
        if self._state is None or not self._state.is_live:
            return
        self._state.is_live = False
        logger.info("Meeting ended: %s", self._state.topic)
        self._notify()
        self._schedule_clear()

    # ─── Internals ───────────────────────────────────────────────────────────

    def _needs_synthesised_session(self, session_id: Optional[str]) -> bool:
        if self._state is None:
            return True
        if self._state.is_live:
            return False
        # an ended meeting only absorbs late joins for itself
        return session_id is not None and str(session_id) != self._state.session_id

    def _schedule_clear(self) -> None:
        self._cancel_clear()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; clearing ended meeting immediately")
            self._clear()
            return
        self._clear_handle = loop.call_later(self.grace_seconds, self._clear)

    def _cancel_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _clear(self) -> None:
        self._clear_handle = None
        if self._state is not None and not self._state.is_live:
            logger.debug("Grace window over, dropping meeting %s", self._state.session_id)
            self._state = None
            self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())
