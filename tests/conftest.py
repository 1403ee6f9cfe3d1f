"""Shared test fixtures and fakes for the external collaborators."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from classroom_relay.database import init_db
from classroom_relay.services.calendar_service import CalendarClient, CalendarError, CalendarEvent
from classroom_relay.services.messaging_service import MessagingClient, MessagingError
from classroom_relay.services.roster_service import GroupMember, RosterClient, RosterError

START = datetime(2026, 3, 2, 12, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeMessenger(MessagingClient):
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []
        self.group_sent = []
        self.fail_groups = False

    async def send(self, phone, text):
        if phone in self.failing:
            raise MessagingError("WhatsApp not connected")
        self.sent.append((phone, text))

    async def send_to_group(self, group_ref, text):
        if self.fail_groups:
            raise MessagingError("group not found")
        self.group_sent.append((group_ref, text))


class FakeCalendar(CalendarClient):
    def __init__(self, events=(), teachers=None):
        self.events = list(events)
        self.teachers = teachers or {}
        self.fail_events = False
        self.fail_teachers = False
        self.deleted = []
        self.requested_ranges = []

    async def list_events(self, start, end):
        self.requested_ranges.append((start, end))
        if self.fail_events:
            raise CalendarError("Teamup API error: 503")
        return list(self.events)

    async def list_subcalendars(self):
        if self.fail_teachers:
            raise CalendarError("Teamup API error: 500")
        return dict(self.teachers)

    async def delete_event(self, event_id):
        self.deleted.append(event_id)


class FakeRoster(RosterClient):
    def __init__(self, members=(), fail=False):
        self.members = list(members)
        self.fail = fail
        self.calls = 0

    async def list_members(self, group_ref):
        self.calls += 1
        if self.fail:
            raise RosterError("WhatsApp not connected")
        return list(self.members)


def make_event(event_id="e1", title="Session 5 - Jane Doe", notes="Student: Jane Doe\nPhone: 15145550199",
               start="2026-03-10T17:00:00+00:00", end="2026-03-10T18:00:00+00:00", subcalendar_ids=(7,)):
    return CalendarEvent(id=event_id, title=title, notes=notes, start_dt=start, end_dt=end,
                         subcalendar_ids=list(subcalendar_ids))


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def calendar():
    return FakeCalendar(teachers={7: "Fayyaz Khan"})


@pytest.fixture
def roster():
    return FakeRoster()
