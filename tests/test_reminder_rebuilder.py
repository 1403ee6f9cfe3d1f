import asyncio
from datetime import date, datetime

import pytest

from conftest import FakeCalendar, make_event

from classroom_relay.services.notification_scheduler import (
    IN_CAR_REMINDERS,
    TRUCK_CLASSES,
    NotificationScheduler,
    class_date_matcher,
)
from classroom_relay.services.reminder_rebuilder import RebuildAborted, ReminderRebuilder

EVENTS = [
    make_event("car-1", "Session 5 - Jane Doe", "<p>Student: Jane Doe #12</p><p>Phone: 15145550199</p>",
               start="2026-03-10T17:00:00-05:00", end="2026-03-10T18:00:00-05:00"),
    make_event("truck-1", "Truck - Raj", "Student: Raj\nPhone: 15145550123\nTruckClass: yes\nClassNumber: 4",
               start="2026-03-11T08:00:00-05:00", end="2026-03-11T12:00:00-05:00"),
    make_event("truck-exam", "Truck Exam - Raj", "Phone: 15145550123\nTruckClass: yes\nExam: Laval",
               start="2026-03-20T09:30:00-05:00", end="2026-03-20T10:30:00-05:00"),
    make_event("no-phone", "Session 2 - Walk-in", "Student: Walk-in"),
    make_event("bad-phone", "Session 3 - Sam", "Student: Sam\nPhone: call me"),
    make_event("past", "Session 1 - Old", "Phone: 15145550000",
               start="2026-03-02T12:30:00+00:00", end="2026-03-02T13:30:00+00:00"),
]


def pending(session_factory):
    db = session_factory()
    try:
        return NotificationScheduler(db).list(status="pending")
    finally:
        db.close()


@pytest.fixture
def rebuilder(session_factory, calendar, clock):
    calendar.events = list(EVENTS)
    return ReminderRebuilder(session_factory, calendar, clock=clock)


@pytest.mark.asyncio
async def test_rebuild_creates_one_reminder_per_reachable_future_class(rebuilder, session_factory):
    report = await rebuilder.rebuild()

    assert report.events_scanned == 6
    assert report.reminders_created == 3
    assert report.skipped_no_phone == 2
    assert report.skipped_past == 1
    assert [m.event_id for m in report.malformed] == ["bad-phone"]

    jobs = {j.message: j for j in pending(session_factory)}
    car = jobs["Reminder: Hi Jane Doe, your Session 5 class with Fayyaz is in 1 hour (5:00 PM). See you soon!"]
    assert car.category == IN_CAR_REMINDERS
    assert car.audience_phones == ["15145550199"]
    assert car.scheduled_at == datetime(2026, 3, 10, 21, 0)
    assert car.target_date == "2026-03-10"
    assert car.target_time == "from 5:00 PM to 6:00 PM"

    truck = jobs["Reminder: You have Truck Class 4 today at 8:00 AM. See you there!"]
    assert truck.category == TRUCK_CLASSES
    assert truck.scheduled_at == datetime(2026, 3, 11, 7, 0)
    assert truck.target_date == "2026-03-11"
    assert truck.target_time is None

    assert "Reminder: You have your Truck Exam today at 9:30 AM in Laval. Good luck! 🍀" in jobs


@pytest.mark.asyncio
async def test_rebuild_twice_is_idempotent(rebuilder, session_factory):
    await rebuilder.rebuild()
    first = sorted((j.message, j.scheduled_at) for j in pending(session_factory))

    report = await rebuilder.rebuild()
    second = sorted((j.message, j.scheduled_at) for j in pending(session_factory))

    assert report.cancelled == 3
    assert first == second


@pytest.mark.asyncio
async def test_rebuild_leaves_unmanaged_jobs_alone(rebuilder, session_factory, clock):
    db = session_factory()
    try:
        theory = NotificationScheduler(db, clock).create("group-1", "Theory at 5", datetime(2026, 3, 5), ["1"])
        theory_id = theory.id
    finally:
        db.close()

    await rebuilder.rebuild()
    assert theory_id in {j.id for j in pending(session_factory)}


@pytest.mark.asyncio
async def test_calendar_failure_aborts_after_cancelling(rebuilder, calendar, session_factory):
    await rebuilder.rebuild()
    calendar.fail_events = True

    with pytest.raises(RebuildAborted) as excinfo:
        await rebuilder.rebuild()

    assert excinfo.value.cancelled == 3
    assert pending(session_factory) == []


@pytest.mark.asyncio
async def test_missing_teacher_names_only_shorten_messages(rebuilder, calendar, session_factory):
    calendar.fail_teachers = True
    await rebuilder.rebuild()
    messages = {j.message for j in pending(session_factory)}
    assert "Reminder: Hi Jane Doe, your Session 5 class is in 1 hour (5:00 PM). See you soon!" in messages


@pytest.mark.asyncio
async def test_fetch_window_is_three_months(rebuilder, calendar):
    await rebuilder.rebuild()
    assert calendar.requested_ranges == [(date(2026, 3, 2), date(2026, 6, 2))]


@pytest.mark.asyncio
async def test_concurrent_rebuilds_are_serialised(session_factory, clock):
    calendar = FakeCalendar(events=EVENTS[:3])
    active = 0
    overlaps = []
    real_list_events = calendar.list_events

    async def slow_list_events(start, end):
        nonlocal active
        active += 1
        overlaps.append(active)
        await asyncio.sleep(0.01)
        active -= 1
        return await real_list_events(start, end)

    calendar.list_events = slow_list_events
    rebuilder = ReminderRebuilder(session_factory, calendar, clock=clock)

    await asyncio.gather(rebuilder.rebuild(), rebuilder.rebuild(), rebuilder.rebuild())

    assert max(overlaps) == 1
    assert len(pending(session_factory)) == 3


@pytest.mark.asyncio
async def test_car_exam_uses_road_test_wording(session_factory, clock):
    calendar = FakeCalendar(
        events=[make_event("exam", "Road Test - Jane", "Student: Jane\nPhone: 15145550199\nExam: SAAQ Laval")],
        teachers={7: "Fayyaz Khan"},
    )
    await ReminderRebuilder(session_factory, calendar, clock=clock).rebuild()
    [job] = pending(session_factory)
    assert job.message == "Reminder: Hi Jane, your road test with Fayyaz is in 1 hour (5:00 PM) in SAAQ Laval. Good luck! 🍀"


@pytest.mark.asyncio
async def test_evening_truck_class_is_cancelled_by_its_calendar_day(session_factory, clock):
    # 20:00 at -04:00 is past midnight UTC
    calendar = FakeCalendar(events=[make_event(
        "truck-eve", "Truck - Raj", "Phone: 15145550199\nTruckClass: yes",
        start="2026-03-10T20:00:00-04:00", end="2026-03-10T23:00:00-04:00",
    )])
    await ReminderRebuilder(session_factory, calendar, clock=clock).rebuild()

    db = session_factory()
    try:
        scheduler = NotificationScheduler(db, clock)
        assert scheduler.cancel_bulk(class_date_matcher("15145550199", date(2026, 3, 11))) == 0
        assert scheduler.cancel_bulk(class_date_matcher("15145550199", date(2026, 3, 10))) == 1
    finally:
        db.close()


@pytest.mark.asyncio
async def test_all_problems_of_an_event_land_in_one_entry(session_factory, clock):
    calendar = FakeCalendar(events=[make_event(
        "broken", notes="Phone: 15145550199\nTruckClass: yes\nClassNumber: four", start="next tuesday",
    )])
    report = await ReminderRebuilder(session_factory, calendar, clock=clock).rebuild()

    [entry] = report.malformed
    assert entry.event_id == "broken"
    assert entry.problems[0] == "class number is not numeric: 'four'"
    assert entry.problems[1].startswith("unreadable start/end time")
    assert report.reminders_created == 0
    assert pending(session_factory) == []
