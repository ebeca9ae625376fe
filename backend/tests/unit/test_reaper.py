from datetime import timedelta

import pytest

from crowd.domain.lifecycle.reaper import LifecycleReaper

from fakes import NOW, FakeAttendanceStore, FakeChatStore, FakeEventStore, make_event


def _reaper(*events, batch_size=500):
	event_store = FakeEventStore(events)
	attendance = FakeAttendanceStore()
	chats = FakeChatStore()
	reaper = LifecycleReaper(
		events=event_store,
		attendance=attendance,
		chats=chats,
		grace=timedelta(hours=1),
		default_ttl=timedelta(hours=24),
		batch_size=batch_size,
	)
	return reaper, event_store, attendance, chats


@pytest.mark.asyncio
async def test_ended_event_is_removed_with_dependents():
	ended = make_event("E3", ends_at=NOW - timedelta(hours=2))
	reaper, events, attendance, chats = _reaper(ended)
	attendance.seed("E3", ["u1", "u2", "u3"])
	chats.seed("E3", 4)

	report = await reaper.sweep(NOW)
	assert report.events_deleted == 1
	assert report.attendance_deleted == 3
	assert report.messages_deleted == 4
	assert report.ok
	assert "E3" not in events.events
	assert await attendance.list_by_event("E3") == []
	assert await chats.list_transcript("E3") == []

	again = await reaper.sweep(NOW + timedelta(seconds=1))
	assert again.total_deleted == 0


@pytest.mark.asyncio
async def test_grace_period_keeps_recently_ended_events():
	recent = make_event("recent", ends_at=NOW - timedelta(minutes=30))
	reaper, events, _, _ = _reaper(recent)
	report = await reaper.sweep(NOW)
	assert report.expired == 0
	assert "recent" in events.events


@pytest.mark.asyncio
async def test_expiration_precedence():
	explicit = make_event("explicit", expires_at=NOW - timedelta(seconds=1))
	open_ended_old = make_event("old", created_at=NOW - timedelta(hours=25))
	open_ended_new = make_event("new", created_at=NOW - timedelta(hours=23))
	reaper, events, _, _ = _reaper(explicit, open_ended_old, open_ended_new)
	assert reaper.expires_at(open_ended_old) == NOW - timedelta(hours=1)

	report = await reaper.sweep(NOW)
	assert report.events_deleted == 2
	assert set(events.events) == {"new"}


@pytest.mark.asyncio
async def test_end_time_overrides_stored_expiry():
	# stored with a 1h grace, swept with a 2h grace
	ends = NOW - timedelta(minutes=90)
	stale = make_event("stale", ends_at=ends, expires_at=ends + timedelta(hours=1))
	event_store = FakeEventStore([stale])
	reaper = LifecycleReaper(
		events=event_store,
		attendance=FakeAttendanceStore(),
		chats=FakeChatStore(),
		grace=timedelta(hours=2),
		default_ttl=timedelta(hours=24),
	)
	assert reaper.expires_at(stale) == ends + timedelta(hours=2)

	report = await reaper.sweep(NOW)
	assert report.expired == 0
	assert "stale" in event_store.events


@pytest.mark.asyncio
async def test_expiration_instant_itself_is_expired():
	boundary = make_event("edge", expires_at=NOW)
	reaper, events, _, _ = _reaper(boundary)
	await reaper.sweep(NOW)
	assert events.events == {}


@pytest.mark.asyncio
async def test_failure_on_one_event_does_not_stop_others():
	first = make_event("bad", ends_at=NOW - timedelta(hours=3))
	second = make_event("good", ends_at=NOW - timedelta(hours=3))
	reaper, events, attendance, _ = _reaper(first, second)
	attendance.seed("bad", ["u1"])
	attendance.seed("good", ["u2"])
	attendance.fail_delete.add("bad")

	report = await reaper.sweep(NOW)
	assert not report.ok
	assert [(err.event_id, err.stage) for err in report.errors] == [("bad", "attendance")]
	assert set(events.events) == {"bad"}
	assert await attendance.count("good") == 0

	attendance.fail_delete.clear()
	retry = await reaper.sweep(NOW)
	assert retry.ok
	assert events.events == {}


@pytest.mark.asyncio
async def test_parent_survives_when_event_delete_fails():
	event = make_event("E", ends_at=NOW - timedelta(hours=3))
	reaper, events, attendance, _ = _reaper(event)
	attendance.seed("E", ["u1"])
	events.fail_delete.add("E")
	report = await reaper.sweep(NOW)
	assert report.errors[0].stage == "event"
	assert report.attendance_deleted == 1
	assert "E" in events.events


@pytest.mark.asyncio
async def test_scan_failure_is_reported():
	reaper, events, _, _ = _reaper(make_event("E", ends_at=NOW - timedelta(hours=3)))
	events.fail_list = True
	report = await reaper.sweep(NOW)
	assert report.scanned == 0
	assert report.errors[0].stage == "scan"


@pytest.mark.asyncio
async def test_dependents_are_drained_in_chunks():
	event = make_event("big", ends_at=NOW - timedelta(hours=3))
	reaper, _, attendance, chats = _reaper(event, batch_size=2)
	attendance.seed("big", [f"u{i}" for i in range(5)])
	chats.seed("big", 4)
	report = await reaper.sweep(NOW)
	assert report.attendance_deleted == 5
	assert report.messages_deleted == 4
	assert attendance.delete_calls == [("big", 2), ("big", 2), ("big", 2)]


@pytest.mark.asyncio
async def test_chat_sweep_leaves_events_and_attendance():
	ended = make_event("ended", ends_at=NOW - timedelta(minutes=10))
	running = make_event("running", ends_at=NOW + timedelta(hours=1))
	reaper, events, attendance, chats = _reaper(ended, running)
	attendance.seed("ended", ["u1"])
	chats.seed("ended", 3)
	chats.seed("running", 2)

	report = await reaper.sweep_chats(NOW)
	assert report.messages_deleted == 3
	assert report.events_deleted == 0
	assert set(events.events) == {"ended", "running"}
	assert await attendance.count("ended") == 1
	assert len(await chats.list_transcript("running")) == 2


@pytest.mark.asyncio
async def test_delete_event_now_ignores_expiry():
	live = make_event("live", ends_at=NOW + timedelta(hours=5))
	other = make_event("other", ends_at=NOW + timedelta(hours=5))
	reaper, events, attendance, chats = _reaper(live, other)
	attendance.seed("live", ["u1"])
	chats.seed("live", 2)

	report = await reaper.delete_event_now("live")
	assert report.ok
	assert (report.events_deleted, report.attendance_deleted, report.messages_deleted) == (1, 1, 2)
	assert set(events.events) == {"other"}
	assert await reaper.delete_event_now("live") is None


@pytest.mark.asyncio
async def test_delete_event_now_keeps_parent_when_dependents_fail():
	doomed = make_event("doomed")
	reaper, events, attendance, _ = _reaper(doomed)
	attendance.seed("doomed", ["u1"])
	attendance.fail_delete.add("doomed")

	report = await reaper.delete_event_now("doomed")
	assert not report.ok
	assert report.errors[0].stage == "attendance"
	assert "doomed" in events.events
