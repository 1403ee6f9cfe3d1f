# classroom_relay/services/calendar_service.py

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import aiohttp

from .. import config

logger = logging.getLogger(__name__)


class CalendarError(Exception):
    pass


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    notes: str
    start_dt: str
    end_dt: str
    subcalendar_ids: List[int] = field(default_factory=list)

    @property
    def teacher_ref(self) -> Optional[int]:
        return self.subcalendar_ids[0] if self.subcalendar_ids else None

    @classmethod
    def from_api(cls, data: dict) -> "CalendarEvent":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            notes=data.get("notes") or "",
            start_dt=data["start_dt"],
            end_dt=data["end_dt"],
            subcalendar_ids=list(data.get("subcalendar_ids") or []),
        )


class CalendarClient(ABC):
    @abstractmethod
    async def list_events(self, start: date, end: date) -> List[CalendarEvent]:
        ...

    @abstractmethod
    async def list_subcalendars(self) -> Dict[int, str]:
        """Subcalendar id to name; subcalendars are named after teachers."""

    @abstractmethod
    async def delete_event(self, event_id: str) -> None:
        ...


class TeamupCalendarClient(CalendarClient):
    def __init__(self, api_key: Optional[str] = None, calendar_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else config.TEAMUP_API_KEY
        self.calendar_key = calendar_key if calendar_key is not None else config.TEAMUP_CALENDAR_KEY
        self.base_url = (base_url or config.TEAMUP_BASE_URL).rstrip("/")

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not (self.api_key and self.calendar_key):
            raise CalendarError("Teamup not configured")
        url = f"{self.base_url}/{self.calendar_key}{path}"
        headers = {"Teamup-Token": self.api_key, "Content-Type": "application/json"}
        try:
            async with aiohttp.ClientSession(headers=headers) as session:
                async with session.request(method, url, **kwargs) as resp:
                    text = await resp.text()
                    if resp.status >= 400:
                        raise CalendarError(f"Teamup API error: {resp.status} {text}")
                    return await resp.json(content_type=None) if text else {}
        except aiohttp.ClientError as e:
            raise CalendarError(f"Teamup unreachable: {e}") from e

    async def list_events(self, start: date, end: date) -> List[CalendarEvent]:
        data = await self._request(
            "GET", "/events", params={"startDate": start.isoformat(), "endDate": end.isoformat()}
        )
        return [CalendarEvent.from_api(e) for e in data.get("events", [])]

    async def list_subcalendars(self) -> Dict[int, str]:
        data = await self._request("GET", "/subcalendars")
        return {s["id"]: s.get("name", "") for s in data.get("subcalendars", [])}

    async def delete_event(self, event_id: str) -> None:
        await self._request("DELETE", f"/events/{event_id}")
        logger.info("Deleted calendar event %s", event_id)
