from datetime import timedelta

import pytest

from crowd.domain.delivery.gateway import PushFailureReason, PushOutcome
from crowd.main import app

from fakes import (
    NOW,
    FakeAttendanceStore,
    FakeEventStore,
    FakeGateway,
    FakePublisher,
    FakeSubscriberStore,
    make_event,
    make_services,
    make_subscriber,
)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(gateway):
    built = make_services(
        events=FakeEventStore([make_event("E1"), make_event("old", ends_at=NOW - timedelta(hours=3))]),
        subscribers=FakeSubscriberStore([make_subscriber("S1", 33.2103, -97.1503)]),
        attendance=FakeAttendanceStore(),
        gateway=gateway,
        publisher=FakePublisher(),
    )
    app.state.services = built
    return built


@pytest.mark.asyncio
async def test_internal_routes_require_secret(api_client, services):
    missing = await api_client.post("/internal/sweep")
    assert missing.status_code == 422
    wrong = await api_client.post("/internal/sweep", headers={"X-Internal-Secret": "nope"})
    assert wrong.status_code == 403


@pytest.mark.asyncio
async def test_event_created_trigger_returns_report(api_client, services, internal_headers, gateway):
    resp = await api_client.post("/internal/triggers/event-created", json={"event_id": "E1"}, headers=internal_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["targeting"]["selected"] == 1
    assert body["delivery"]["succeeded"] == 1
    assert [request.token for request in gateway.sent] == ["tok-S1"]


@pytest.mark.asyncio
async def test_trigger_for_unknown_event_is_404(api_client, services, internal_headers):
    resp = await api_client.post("/internal/triggers/event-created", json={"event_id": "nope"}, headers=internal_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_attendance_trigger_below_threshold_sends_nothing(api_client, services, internal_headers, gateway):
    resp = await api_client.post("/internal/triggers/attendance", json={"event_id": "E1", "count": 3}, headers=internal_headers)
    assert resp.status_code == 200
    assert resp.json()["targeting"]["skipped_reason"] == "threshold_not_reached"
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_sweep_route_deletes_expired_events(api_client, services, internal_headers):
    resp = await api_client.post("/internal/sweep", headers=internal_headers)
    assert resp.status_code == 200
    assert resp.json()["events_deleted"] == 1
    assert "old" not in services.events.events

    chats = await api_client.post("/internal/sweep/chats", headers=internal_headers)
    assert chats.status_code == 200


@pytest.mark.asyncio
async def test_test_notification_prunes_dead_token(api_client, services, internal_headers, gateway):
    ok = await api_client.post("/internal/test-notification", json={"subscriber_id": "S1"}, headers=internal_headers)
    assert ok.status_code == 200
    assert ok.json() == {"success": True}

    gateway.outcomes["tok-S1"] = PushOutcome.failed(PushFailureReason.DESTINATION_INVALID)
    gone = await api_client.post("/internal/test-notification", json={"subscriber_id": "S1"}, headers=internal_headers)
    assert gone.status_code == 410
    assert services.subscribers.subscribers["S1"].push_token is None

    again = await api_client.post("/internal/test-notification", json={"subscriber_id": "S1"}, headers=internal_headers)
    assert again.status_code == 400

    unknown = await api_client.post("/internal/test-notification", json={"subscriber_id": "ghost"}, headers=internal_headers)
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_create_event_and_join(api_client, services, internal_headers):
    created = await api_client.post(
        "/internal/events",
        json={"host_id": "H", "title": "Pickup", "category": "sports", "latitude": 33.21, "longitude": -97.15},
        headers=internal_headers,
    )
    assert created.status_code == 201
    event_id = created.json()["id"]
    assert len(created.json()["geocell"]) == 6

    joined = await api_client.post(f"/internal/events/{event_id}/attendance", json={"user_id": "u1"}, headers=internal_headers)
    assert joined.json() == {"event_id": event_id, "created": True, "count": 1}
    left = await api_client.delete(f"/internal/events/{event_id}/attendance/u1", headers=internal_headers)
    assert left.json()["count"] == 0


@pytest.mark.asyncio
async def test_create_event_with_bad_coordinates_is_rejected(api_client, services, internal_headers):
    resp = await api_client.post(
        "/internal/events",
        json={"host_id": "H", "latitude": 123.0, "longitude": 0.0},
        headers=internal_headers,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
    live = await api_client.get("/health/live")
    assert live.json() == {"status": "ok"}

    forbidden = await api_client.get("/metrics")
    assert forbidden.status_code == 403
    allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "test-admin-token"})
    assert allowed.status_code == 200
    assert "crowd_triggers_total" in allowed.text


@pytest.mark.asyncio
async def test_delete_event_cascades_immediately(api_client, services, internal_headers):
    services.attendance.seed("E1", ["u1", "u2"])
    services.chats.seed("E1", 3)
    resp = await api_client.delete("/internal/events/E1", headers=internal_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["events_deleted"] == 1
    assert body["attendance_deleted"] == 2
    assert body["messages_deleted"] == 3
    assert "E1" not in services.events.events

    again = await api_client.delete("/internal/events/E1", headers=internal_headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_location_update_route(api_client, services, internal_headers):
    resp = await api_client.put(
        "/internal/subscribers/S1/location",
        json={"latitude": 40.0, "longitude": -75.0},
        headers=internal_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["geocell"].startswith("dr4")
    assert services.subscribers.subscribers["S1"].latitude == 40.0

    unknown = await api_client.put(
        "/internal/subscribers/ghost/location",
        json={"latitude": 40.0, "longitude": -75.0},
        headers=internal_headers,
    )
    assert unknown.status_code == 404
    invalid = await api_client.put(
        "/internal/subscribers/S1/location",
        json={"latitude": 95.0, "longitude": -75.0},
        headers=internal_headers,
    )
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_geocell_sync_route_needs_redis_index(api_client, services, internal_headers):
    resp = await api_client.post("/internal/geocell-sync", headers=internal_headers)
    assert resp.status_code == 409
