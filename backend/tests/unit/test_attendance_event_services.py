from datetime import timedelta

import pytest

from crowd.domain.attendance.service import AttendanceService
from crowd.domain.events.service import EventService, compute_expires_at
from crowd.domain.exceptions import InvalidCoordinate
from crowd.domain.geo import geocell

from fakes import NOW, FakeAttendanceStore, FakeEventStore, FakePublisher, make_event


def _attendance_service():
    events = FakeEventStore([make_event("E")])
    attendance = FakeAttendanceStore()
    publisher = FakePublisher()
    return AttendanceService(events=events, attendance=attendance, publisher=publisher), events, publisher


@pytest.mark.asyncio
async def test_join_publishes_live_count():
    service, events, publisher = _attendance_service()
    first = await service.join("E", "u1", now=NOW)
    second = await service.join("E", "u2", now=NOW)
    assert (first.created, first.count) == (True, 1)
    assert second.count == 2
    assert events.events["E"].attendee_count == 2
    assert publisher.attendance == [("E", 1), ("E", 2)]


@pytest.mark.asyncio
async def test_join_twice_is_idempotent():
    service, events, publisher = _attendance_service()
    await service.join("E", "u1", now=NOW)
    repeat = await service.join("E", "u1", now=NOW)
    assert not repeat.created
    assert repeat.count == 1
    assert events.events["E"].attendee_count == 1
    assert publisher.attendance == [("E", 1)]


@pytest.mark.asyncio
async def test_leave_decrements_once():
    service, events, _ = _attendance_service()
    await service.join("E", "u1", now=NOW)
    await service.leave("E", "u1")
    result = await service.leave("E", "u1")
    assert result.count == 0
    assert events.events["E"].attendee_count == 0


def test_compute_expires_at_prefers_end_time():
    ends = NOW + timedelta(hours=3)
    assert compute_expires_at(NOW, ends) == ends + timedelta(hours=1)
    assert compute_expires_at(NOW, None) == NOW + timedelta(hours=24)


@pytest.mark.asyncio
async def test_create_event_stores_cell_and_announces():
    events = FakeEventStore()
    publisher = FakePublisher()
    service = EventService(events=events, publisher=publisher)
    event = await service.create_event(
        host_id="H",
        latitude=33.21,
        longitude=-97.15,
        title="Jam",
        category="music",
        tags=["live", " ", "jazz"],
        ends_at=NOW + timedelta(hours=2),
        event_id="E9",
        now=NOW,
    )
    assert event.geocell == geocell.encode(33.21, -97.15, 6)
    assert event.tags == ["live", "jazz"]
    assert event.expires_at == NOW + timedelta(hours=3)
    assert events.events["E9"] is event
    assert publisher.created == ["E9"]


@pytest.mark.asyncio
async def test_create_event_rejects_bad_coordinates():
    service = EventService(events=FakeEventStore(), publisher=FakePublisher())
    with pytest.raises(InvalidCoordinate):
        await service.create_event(host_id="H", latitude=120.0, longitude=0.0, title="x", now=NOW)
