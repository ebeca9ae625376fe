"""Push gateway boundary and the FCM HTTP v1 adapter."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from crowd.settings import settings

logger = logging.getLogger(__name__)

# FCM error codes meaning the registration token will never work again.
_DEAD_TOKEN_CODES = frozenset({"UNREGISTERED", "SENDER_ID_MISMATCH"})


class PushFailureReason(str, enum.Enum):
    DESTINATION_INVALID = "destination_invalid"
    TRANSIENT = "transient"


@dataclass(frozen=True, slots=True)
class PushMessage:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PushRequest:
    token: str
    message: PushMessage


@dataclass(frozen=True, slots=True)
class PushOutcome:
    success: bool
    reason: Optional[PushFailureReason] = None
    detail: Optional[str] = None

    @classmethod
    def ok(cls) -> "PushOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: PushFailureReason, detail: Optional[str] = None) -> "PushOutcome":
        return cls(success=False, reason=reason, detail=detail)


class PushGateway(Protocol):
    async def send_batch(self, requests: Sequence[PushRequest]) -> List[PushOutcome]:
        """Send every request; the result list is aligned with ``requests``."""
        ...


def classify_fcm_error(status_code: int, body: Any) -> PushOutcome:
    """Map an FCM v1 error response onto a push outcome."""
    error = body.get("error", {}) if isinstance(body, dict) else {}
    status = str(error.get("status") or "")
    message = str(error.get("message") or "")
    codes = {status}
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            codes.add(str(detail["errorCode"]))
    if codes & _DEAD_TOKEN_CODES:
        return PushOutcome.failed(PushFailureReason.DESTINATION_INVALID, detail=status or str(status_code))
    if "INVALID_ARGUMENT" in codes and "registration token" in message.lower():
        return PushOutcome.failed(PushFailureReason.DESTINATION_INVALID, detail="INVALID_ARGUMENT")
    return PushOutcome.failed(PushFailureReason.TRANSIENT, detail=status or f"http {status_code}")


def build_fcm_message(request: PushRequest) -> Dict[str, Any]:
    message = request.message
    thread_id = f"event-{message.data['eventId']}" if message.data.get("eventId") else None
    aps: Dict[str, Any] = {
        "alert": {"title": message.title, "body": message.body},
        "sound": "default",
        "badge": 1,
        "category": "EVENT_INVITE",
        "content-available": 1,
        "mutable-content": 1,
    }
    if thread_id:
        aps["thread-id"] = thread_id
    return {
        "message": {
            "token": request.token,
            "notification": {"title": message.title, "body": message.body},
            "data": {key: str(value) for key, value in message.data.items()},
            "apns": {
                "headers": {"apns-priority": "10", "apns-push-type": "alert"},
                "payload": {"aps": aps},
            },
            "android": {
                "priority": "high",
                "notification": {"sound": "default", "channel_id": "event_notifications"},
            },
        }
    }


class FcmPushGateway:
    """Sends each request through the FCM HTTP v1 ``messages:send`` endpoint."""

    def __init__(
        self,
        *,
        project_id: Optional[str] = None,
        access_token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        max_concurrency: Optional[int] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.project_id = project_id or settings.fcm_project_id
        self.access_token = access_token or settings.fcm_access_token
        self.base_url = (base_url or settings.fcm_base_url).rstrip("/")
        self._http = http
        self._owns_http = http is None
        self._limit = asyncio.Semaphore(max(1, max_concurrency or settings.push_max_concurrency))

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            timeout = httpx.Timeout(settings.push_timeout_seconds, connect=5.0)
            self._http = httpx.AsyncClient(timeout=timeout)
        return self._http

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1/projects/{self.project_id}/messages:send"

    async def send_batch(self, requests: Sequence[PushRequest]) -> List[PushOutcome]:
        if not requests:
            return []
        if not self.project_id or not self.access_token:
            logger.warning("push.fcm_not_configured", extra={"count": len(requests)})
            return [PushOutcome.failed(PushFailureReason.TRANSIENT, detail="not_configured") for _ in requests]
        return list(await asyncio.gather(*(self._send_one(request) for request in requests)))

    async def _send_one(self, request: PushRequest) -> PushOutcome:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        async with self._limit:
            try:
                response = await self._client().post(self.endpoint, json=build_fcm_message(request), headers=headers)
            except httpx.HTTPError as exc:
                return PushOutcome.failed(PushFailureReason.TRANSIENT, detail=type(exc).__name__)
        if response.status_code == 200:
            return PushOutcome.ok()
        try:
            body = response.json()
        except ValueError:
            body = None
        return classify_fcm_error(response.status_code, body)

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None


__all__ = [
    "FcmPushGateway",
    "PushFailureReason",
    "PushGateway",
    "PushMessage",
    "PushOutcome",
    "PushRequest",
    "build_fcm_message",
    "classify_fcm_error",
]
