"""Internal endpoints for other services and operators."""

from __future__ import annotations

import hmac
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from crowd.container import Services
from crowd.domain.delivery.gateway import PushMessage
from crowd.domain.exceptions import DeliveryTransientFailure, DestinationInvalid, InvalidCoordinate, StoreUnavailable
from crowd.settings import settings

router = APIRouter(prefix="/internal", tags=["internal"])


class EventTriggerRequest(BaseModel):
	event_id: str = Field(..., min_length=1)


class AttendanceTriggerRequest(BaseModel):
	event_id: str = Field(..., min_length=1)
	count: Optional[int] = Field(default=None, ge=0)


class SingleNotificationRequest(BaseModel):
	subscriber_id: str = Field(..., min_length=1)
	title: str = "Test Notification"
	body: str = "Push notifications are working."


class CreateEventRequest(BaseModel):
	host_id: str = Field(..., min_length=1)
	title: str = "New Event"
	category: str = "hangout"
	tags: List[str] = Field(default_factory=list)
	latitude: float
	longitude: float
	location_name: Optional[str] = None
	starts_at: Optional[datetime] = None
	ends_at: Optional[datetime] = None


class AttendanceRequest(BaseModel):
	user_id: str = Field(..., min_length=1)


class LocationUpdateRequest(BaseModel):
	latitude: float
	longitude: float


def verify_internal_secret(x_internal_secret: str = Header(..., alias="X-Internal-Secret")) -> None:
	expected = settings.internal_secret
	if not expected or not hmac.compare_digest(x_internal_secret, expected):
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid_internal_secret")


def get_services(request: Request) -> Services:
	services = getattr(request.app.state, "services", None)
	if services is None:
		raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="services_not_ready")
	return services


def _unavailable(exc: StoreUnavailable) -> HTTPException:
	return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.reason)


@router.post("/triggers/event-created", dependencies=[Depends(verify_internal_secret)])
async def trigger_event_created(payload: EventTriggerRequest, services: Services = Depends(get_services)) -> dict:
	try:
		result = await services.pipeline.handle_event_created(payload.event_id)
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	if result is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event_not_found")
	return result.to_dict()


@router.post("/triggers/attendance", dependencies=[Depends(verify_internal_secret)])
async def trigger_attendance(payload: AttendanceTriggerRequest, services: Services = Depends(get_services)) -> dict:
	try:
		result = await services.pipeline.handle_attendance(payload.event_id, payload.count)
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	if result is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event_not_found")
	return result.to_dict()


@router.post("/sweep", dependencies=[Depends(verify_internal_secret)])
async def sweep_now(services: Services = Depends(get_services)) -> dict:
	report = await services.reaper_job.run_once()
	return report.to_dict()


@router.post("/sweep/chats", dependencies=[Depends(verify_internal_secret)])
async def sweep_chats_now(services: Services = Depends(get_services)) -> dict:
	report = await services.reaper_job.run_chats_once()
	return report.to_dict()


@router.post("/test-notification", dependencies=[Depends(verify_internal_secret)])
async def send_test_notification(payload: SingleNotificationRequest, services: Services = Depends(get_services)) -> dict:
	try:
		subscriber = await services.subscribers.get_subscriber(payload.subscriber_id)
		if subscriber is None:
			raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="subscriber_not_found")
		if not subscriber.push_token:
			raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no_push_token")
		message = PushMessage(title=payload.title, body=payload.body, data={"type": "test"})
		await services.dispatcher.send_direct(subscriber, message)
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	except DestinationInvalid as exc:
		raise HTTPException(status_code=status.HTTP_410_GONE, detail=exc.reason) from exc
	except DeliveryTransientFailure as exc:
		raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.reason) from exc
	return {"success": True}


@router.post("/events", status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_internal_secret)])
async def create_event(payload: CreateEventRequest, services: Services = Depends(get_services)) -> dict:
	try:
		event = await services.event_service.create_event(
			host_id=payload.host_id,
			latitude=payload.latitude,
			longitude=payload.longitude,
			title=payload.title,
			category=payload.category,
			tags=payload.tags,
			location_name=payload.location_name,
			starts_at=payload.starts_at,
			ends_at=payload.ends_at,
		)
	except InvalidCoordinate as exc:
		raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_coordinate") from exc
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	return {
		"id": event.id,
		"geocell": event.geocell,
		"expires_at": event.expires_at.isoformat() if event.expires_at else None,
	}


@router.delete("/events/{event_id}", dependencies=[Depends(verify_internal_secret)])
async def delete_event(event_id: str, services: Services = Depends(get_services)) -> dict:
	try:
		report = await services.reaper.delete_event_now(event_id)
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	if report is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event_not_found")
	if not report.ok:
		raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="delete_incomplete")
	return {"success": True, **report.to_dict()}


@router.post("/events/{event_id}/attendance", dependencies=[Depends(verify_internal_secret)])
async def join_event(event_id: str, payload: AttendanceRequest, services: Services = Depends(get_services)) -> dict:
	try:
		result = await services.attendance_service.join(event_id, payload.user_id)
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	return {"event_id": result.event_id, "created": result.created, "count": result.count}


@router.delete("/events/{event_id}/attendance/{user_id}", dependencies=[Depends(verify_internal_secret)])
async def leave_event(event_id: str, user_id: str, services: Services = Depends(get_services)) -> dict:
	try:
		result = await services.attendance_service.leave(event_id, user_id)
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	return {"event_id": result.event_id, "count": result.count}


@router.put("/subscribers/{subscriber_id}/location", dependencies=[Depends(verify_internal_secret)])
async def update_location(
	subscriber_id: str,
	payload: LocationUpdateRequest,
	services: Services = Depends(get_services),
) -> dict:
	try:
		cell = await services.location_service.update_location(subscriber_id, payload.latitude, payload.longitude)
	except InvalidCoordinate as exc:
		raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_coordinate") from exc
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	if cell is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="subscriber_not_found")
	return {"subscriber_id": subscriber_id, "geocell": cell}


@router.post("/geocell-sync", dependencies=[Depends(verify_internal_secret)])
async def sync_geocell_index(services: Services = Depends(get_services)) -> dict:
	if services.geocell_sync is None:
		raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="geocell_index_not_redis")
	try:
		written = await services.geocell_sync.run_once()
	except StoreUnavailable as exc:
		raise _unavailable(exc) from exc
	return {"subscribers": written}
