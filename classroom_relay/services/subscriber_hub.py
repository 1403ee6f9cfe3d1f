"""Fan-out of live meeting changes to dashboard push streams.

Each stream owns a ``Subscription``: a bounded queue fed synchronously by the
hub (callbacks never await) and drained by the HTTP response generator, plus
its own keepalive task.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from ..utils.name_matching import names_match, normalize_name
from .live_state import LiveSnapshot, Participant

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keepalive\n\n"


@dataclass(frozen=True)
class ExpectedAttendee:
    phone: str
    name: Optional[str] = None
    push_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.push_name or ""


@dataclass(frozen=True)
class LearnedIdentity:
    zoom_name: str
    whatsapp_phone: str
    whatsapp_name: Optional[str] = None


@dataclass(frozen=True)
class MatchedAttendee:
    name: str
    phone: str
    live_name: str
    join_time: str


@dataclass(frozen=True)
class AbsentAttendee:
    name: str
    phone: str


@dataclass(frozen=True)
class UnmatchedParticipant:
    name: str
    join_time: str


@dataclass
class ReconcileResult:
    matched: List[MatchedAttendee] = field(default_factory=list)
    expected_but_absent: List[AbsentAttendee] = field(default_factory=list)
    unmatched_live: List[UnmatchedParticipant] = field(default_factory=list)


def _name_key(name: str) -> str:
    return normalize_name(name) or name.lower()


def _aggregate(roster: Iterable[Participant]) -> Dict[str, Participant]:
    # the same person may hold several connections; keep the earliest join
    aggregated: Dict[str, Participant] = {}
    for p in roster:
        key = _name_key(p.display_name)
        existing = aggregated.get(key)
        if existing is None or p.join_time < existing.join_time:
            aggregated[key] = p
    return aggregated


def reconcile(
    expected_attendees: Sequence[ExpectedAttendee],
    live_roster: Iterable[Participant],
    learned_identity_map: Sequence[LearnedIdentity],
) -> ReconcileResult:
    """Match live participants to expected attendees.

    Learned identities are applied first, then fuzzy name matching. Pure: the
    result depends only on the arguments.
    """
    result = ReconcileResult()
    live = _aggregate(live_roster)
    matched_phones = set()
    matched_keys = set()

    learned_by_name: Dict[str, str] = {}
    for lm in learned_identity_map:
        learned_by_name[lm.zoom_name.lower()] = lm.whatsapp_phone
        normalized = normalize_name(lm.zoom_name)
        if normalized and normalized not in learned_by_name:
            learned_by_name[normalized] = lm.whatsapp_phone

    member_by_phone = {m.phone: m for m in expected_attendees}

    for key, p in live.items():
        phone = learned_by_name.get(p.display_name.lower()) or learned_by_name.get(key)
        member = member_by_phone.get(phone) if phone else None
        if member is None or member.phone in matched_phones:
            continue
        result.matched.append(MatchedAttendee(member.label or member.phone, member.phone, p.display_name, p.join_time))
        matched_phones.add(member.phone)
        matched_keys.add(key)

    for member in expected_attendees:
        if member.phone in matched_phones:
            continue
        if not member.label:
            result.expected_but_absent.append(AbsentAttendee(member.phone, member.phone))
            continue
        found = next(
            (key for key, p in live.items() if key not in matched_keys and names_match(member.label, p.display_name)),
            None,
        )
        if found is None:
            result.expected_but_absent.append(AbsentAttendee(member.label, member.phone))
            continue
        p = live[found]
        result.matched.append(MatchedAttendee(member.label, member.phone, p.display_name, p.join_time))
        matched_phones.add(member.phone)
        matched_keys.add(found)

    for key, p in live.items():
        if key not in matched_keys:
            result.unmatched_live.append(UnmatchedParticipant(p.display_name, p.join_time))

    return result


def _seconds_since(join_time: str, now: datetime) -> int:
    try:
        joined = datetime.fromisoformat(join_time.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return 0
    if joined.tzinfo is None:
        joined = joined.replace(tzinfo=timezone.utc)
    return max(0, int((now - joined).total_seconds()))


def build_view(
    snapshot: LiveSnapshot,
    expected_attendees: Sequence[ExpectedAttendee],
    learned_identity_map: Sequence[LearnedIdentity],
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    result = reconcile(expected_attendees, snapshot.participants, learned_identity_map)
    return {
        "type": "state",
        "isLive": snapshot.is_live,
        "meetingId": snapshot.session_id,
        "topic": snapshot.topic,
        "startTime": snapshot.start_time,
        "participantCount": snapshot.participant_count,
        "matched": [
            {
                "whatsappName": m.name,
                "whatsappPhone": m.phone,
                "zoomName": m.live_name,
                "joinTime": m.join_time,
                "duration": _seconds_since(m.join_time, now),
            }
            for m in result.matched
        ],
        "absent": [{"name": a.name, "phone": a.phone} for a in result.expected_but_absent],
        "unmatchedZoom": [
            {"name": u.name, "duration": _seconds_since(u.join_time, now)} for u in result.unmatched_live
        ],
        "timestamp": now.isoformat().replace("+00:00", "Z"),
    }


def format_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class SubscriberHub:
    def __init__(self, keepalive_interval: float = 30.0):
        self.keepalive_interval = keepalive_interval
        self._callbacks: Dict[str, Callable[[LiveSnapshot], None]] = {}

    def __len__(self) -> int:
        return len(self._callbacks)

    def register(self, callback: Callable[[LiveSnapshot], None]) -> str:
        handle = uuid4().hex
        self._callbacks[handle] = callback
        logger.info("Listener added (%d total)", len(self._callbacks))
        return handle

    def unregister(self, handle: str) -> None:
        if self._callbacks.pop(handle, None) is not None:
            logger.info("Listener removed (%d remaining)", len(self._callbacks))

    def notify(self, snapshot: LiveSnapshot) -> None:
        for handle, callback in list(self._callbacks.items()):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Listener %s failed, dropping it", handle)
                self._callbacks.pop(handle, None)

    def subscribe(
        self,
        expected_attendees: Sequence[ExpectedAttendee],
        learned_identity_map: Sequence[LearnedIdentity],
        queue_size: int = 8,
    ) -> "Subscription":
        """Register a queue-backed subscriber and start its keepalive; needs a running loop."""
        subscription = Subscription(self, expected_attendees, learned_identity_map, queue_size)
        subscription.handle = self.register(subscription.push_state)
        subscription.keepalive_task = asyncio.get_running_loop().create_task(subscription.keepalive())
        return subscription


class Subscription:
    def __init__(self, hub: SubscriberHub, expected_attendees, learned_identity_map, queue_size: int):
        self.hub = hub
        self.expected_attendees = list(expected_attendees)
        self.learned_identity_map = list(learned_identity_map)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.handle: Optional[str] = None
        self.keepalive_task: Optional[asyncio.Task] = None
        self.dropped = 0
        self.closed = False

    def push_state(self, snapshot: LiveSnapshot) -> None:
        self.offer(format_event(build_view(snapshot, self.expected_attendees, self.learned_identity_map)))

    def offer(self, frame: str) -> None:
        if self.queue.full():
            # a newer frame supersedes whatever the client has not read yet
            self.queue.get_nowait()
            self.dropped += 1
            logger.debug("Subscriber %s is behind, %d frames dropped so far", self.handle, self.dropped)
        self.queue.put_nowait(frame)

    async def keepalive(self) -> None:
        while True:
            await asyncio.sleep(self.hub.keepalive_interval)
            if self.queue.empty():
                self.offer(KEEPALIVE_FRAME)

    async def next_frame(self) -> str:
        return await self.queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.handle is not None:
            self.hub.unregister(self.handle)
        if self.keepalive_task is not None:
            self.keepalive_task.cancel()
