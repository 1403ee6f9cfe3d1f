import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
from sqlalchemy.orm import Session

from .. import config
from ..models import LearnedMatch
from .subscriber_hub import ExpectedAttendee, LearnedIdentity

logger = logging.getLogger(__name__)


class RosterError(Exception):
    pass


@dataclass(frozen=True)
class GroupMember:
    phone: str
    name: Optional[str] = None
    push_name: Optional[str] = None
    is_admin: bool = False


class RosterClient(ABC):
    @abstractmethod
    async def list_members(self, group_ref: str) -> List[GroupMember]:
        ...


class WhatsAppRosterClient(RosterClient):
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, timeout: float = 15.0):
        self.base_url = (base_url or config.WHATSAPP_GATEWAY_URL).rstrip("/")
        self.token = token if token is not None else config.WHATSAPP_GATEWAY_TOKEN
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def list_members(self, group_ref: str) -> List[GroupMember]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        url = f"{self.base_url}/groups/{group_ref}/participants"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout, headers=headers) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise RosterError(f"Group lookup failed: {resp.status} {await resp.text()}")
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RosterError(f"WhatsApp gateway unreachable: {e}") from e

        return [
            GroupMember(
                phone=str(m.get("phone", "")),
                name=m.get("name"),
                push_name=m.get("pushName"),
                is_admin=bool(m.get("isSuperAdmin") or m.get("isAdmin")),
            )
            for m in data.get("participants", [])
            if m.get("phone")
        ]


async def load_expected_attendees(roster: RosterClient, group_ref: Optional[str]) -> List[ExpectedAttendee]:
    """Students of the group (admins excluded); an unreachable roster yields an empty list."""
    if not group_ref:
        return []
    try:
        members = await roster.list_members(group_ref)
    except Exception:
        logger.exception("Could not load members of group %s", group_ref)
        return []
    return [ExpectedAttendee(m.phone, m.name, m.push_name) for m in members if not m.is_admin]


def load_learned_identities(db: Session) -> List[LearnedIdentity]:
    try:
        rows = db.query(LearnedMatch).order_by(LearnedMatch.updated_at.desc()).all()
    except Exception:
        logger.exception("Could not load learned Zoom name matches")
        return []
    return [LearnedIdentity(r.zoom_name, r.whatsapp_phone, r.whatsapp_name) for r in rows]
