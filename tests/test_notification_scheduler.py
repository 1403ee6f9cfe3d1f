from datetime import date, datetime, timedelta, timezone

import pytest

from classroom_relay.models import JobStatus
from classroom_relay.services.notification_scheduler import (
    IN_CAR_REMINDERS,
    TRUCK_CLASSES,
    CancelOutcome,
    JobValidationError,
    NotificationScheduler,
    class_date_matcher,
)


@pytest.fixture
def scheduler(db, clock):
    return NotificationScheduler(db, clock=clock)


def test_create_in_future_is_pending(scheduler, clock):
    job = scheduler.create("group-1", "Class tonight", clock() + timedelta(seconds=1), ["15145550001"])
    assert job.status == "pending"
    assert job.audience_phones == ["15145550001"]
    assert job.sent_at is None


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(seconds=-1), timedelta(days=-3)])
def test_create_not_in_future_is_rejected(scheduler, clock, offset):
    with pytest.raises(JobValidationError):
        scheduler.create("group-1", "Too late", clock() + offset, ["15145550001"])
    assert scheduler.list() == []


def test_create_converts_aware_times_to_utc(scheduler, clock):
    local = datetime(2026, 3, 2, 9, 0, tzinfo=timezone(timedelta(hours=-5)))
    job = scheduler.create("group-1", "hi", local, ["1"])
    assert job.scheduled_at == datetime(2026, 3, 2, 14, 0)


def test_create_requires_audience_unless_broadcast(scheduler, clock):
    with pytest.raises(JobValidationError):
        scheduler.create("group-1", "hi", clock() + timedelta(hours=1), [])
    job = scheduler.create("group-1", "hi", clock() + timedelta(hours=1), [], is_broadcast=True)
    assert job.is_broadcast


def test_audience_keeps_order_and_duplicates(scheduler, clock):
    job = scheduler.create("g", "hi", clock() + timedelta(hours=1), ["2", "1", "2"])
    assert scheduler.get(job.id).audience_phones == ["2", "1", "2"]


def test_list_filters_by_group_and_status(scheduler, clock):
    a = scheduler.create("g1", "a", clock() + timedelta(hours=2), ["1"])
    scheduler.create("g2", "b", clock() + timedelta(hours=1), ["1"])
    scheduler.cancel(a.id)

    assert [j.message for j in scheduler.list()] == ["b", "a"]
    assert [j.message for j in scheduler.list(group_ref="g1")] == ["a"]
    assert [j.message for j in scheduler.list(status="pending")] == ["b"]


def test_cancel_outcomes(scheduler, clock):
    job = scheduler.create("g", "hi", clock() + timedelta(hours=1), ["1"])
    assert scheduler.cancel("missing") is CancelOutcome.NOT_FOUND
    assert scheduler.cancel(job.id) is CancelOutcome.CANCELLED
    assert scheduler.cancel(job.id) is CancelOutcome.NOT_PENDING
    assert scheduler.get(job.id).status == "cancelled"


def test_cancel_of_sent_job_is_conflict(scheduler, clock):
    job = scheduler.create("g", "hi", clock() + timedelta(hours=1), ["1"])
    clock.advance(hours=2)
    scheduler.mark_outcome(job, sent=1, errors=[])

    assert scheduler.cancel(job.id) is CancelOutcome.NOT_PENDING
    assert scheduler.get(job.id).status == "sent"


@pytest.mark.parametrize("terminal", [JobStatus.SENT, JobStatus.FAILED, JobStatus.CANCELLED])
def test_terminal_states_have_no_way_out(terminal):
    assert not any(terminal.can_transition_to(target) for target in JobStatus)


def test_outcome_does_not_overwrite_a_cancellation(scheduler, session_factory, clock):
    job = scheduler.create("g", "hi", clock() + timedelta(hours=1), ["1"])
    clock.advance(hours=2)

    other = session_factory()
    try:
        assert NotificationScheduler(other, clock).cancel(job.id) is CancelOutcome.CANCELLED
    finally:
        other.close()

    assert scheduler.mark_outcome(job, sent=1, errors=[]) is JobStatus.CANCELLED
    stored = scheduler.get(job.id)
    assert stored.status == "cancelled"
    assert stored.sent_at is None


def test_cancel_bulk_skips_jobs_finished_elsewhere(scheduler, session_factory, clock):
    first = scheduler.create(IN_CAR_REMINDERS, "a", clock() + timedelta(hours=3), ["1"], category=IN_CAR_REMINDERS)
    scheduler.create(IN_CAR_REMINDERS, "b", clock() + timedelta(hours=3), ["1"], category=IN_CAR_REMINDERS)

    def cancel_first_elsewhere(job):
        other = session_factory()
        try:
            NotificationScheduler(other, clock).cancel(first.id)
        finally:
            other.close()
        return True

    assert scheduler.cancel_bulk(cancel_first_elsewhere) == 1
    assert scheduler.list(status="pending") == []


def test_due_only_returns_pending_jobs_past_their_time(scheduler, clock):
    soon = scheduler.create("g", "soon", clock() + timedelta(minutes=5), ["1"])
    scheduler.create("g", "later", clock() + timedelta(hours=5), ["1"])
    cancelled = scheduler.create("g", "cancelled", clock() + timedelta(minutes=1), ["1"])
    scheduler.cancel(cancelled.id)

    clock.advance(minutes=10)
    assert [j.id for j in scheduler.due()] == [soon.id]


def test_cancel_bulk_by_category(scheduler, clock):
    scheduler.create(IN_CAR_REMINDERS, "car", clock() + timedelta(hours=3), ["1"], category=IN_CAR_REMINDERS)
    scheduler.create(TRUCK_CLASSES, "truck", clock() + timedelta(hours=3), ["1"], category=TRUCK_CLASSES)
    scheduler.create("group-1", "theory", clock() + timedelta(hours=3), ["1"])

    assert scheduler.cancel_bulk(categories=[IN_CAR_REMINDERS, TRUCK_CLASSES]) == 2
    assert [j.message for j in scheduler.list(status="pending")] == ["theory"]


def test_class_date_matcher_uses_target_date_or_lead_time(scheduler, clock):
    class_day = date(2026, 3, 10)
    car = scheduler.create(IN_CAR_REMINDERS, "car", datetime(2026, 3, 10, 16, 0), ["1514"],
                           category=IN_CAR_REMINDERS, target_date=class_day)
    other_student = scheduler.create(IN_CAR_REMINDERS, "car", datetime(2026, 3, 10, 16, 0), ["1999"],
                                     category=IN_CAR_REMINDERS, target_date=class_day)
    # truck reminder at 20:00 on the 9th is for a class at 02:00 on the 10th
    truck_next_day = scheduler.create(TRUCK_CLASSES, "truck", datetime(2026, 3, 9, 20, 0), ["1514"],
                                      category=TRUCK_CLASSES)
    truck_same_day = scheduler.create(TRUCK_CLASSES, "truck", datetime(2026, 3, 9, 10, 0), ["1514"],
                                      category=TRUCK_CLASSES)

    cancelled = scheduler.cancel_bulk(class_date_matcher("1514", class_day))

    assert cancelled == 2
    assert scheduler.get(car.id).status == "cancelled"
    assert scheduler.get(truck_next_day.id).status == "cancelled"
    assert scheduler.get(other_student.id).status == "pending"
    assert scheduler.get(truck_same_day.id).status == "pending"


def test_pending_summary(scheduler, clock):
    assert scheduler.pending_summary() == (0, None)
    later = scheduler.create("g", "later", clock() + timedelta(hours=5), ["1"])
    sooner = scheduler.create("g", "sooner", clock() + timedelta(hours=1), ["1"])
    count, next_up = scheduler.pending_summary()
    assert count == 2
    assert next_up.id == sooner.id
    assert later.id != sooner.id
