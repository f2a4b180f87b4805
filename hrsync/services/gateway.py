"""Gateway to the external HR timesheet API."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .events import EventBus, SubmissionFailedEvent
from ..models.queue import SubmissionAction
from ..utils.clock import Clock, utcnow
from ..utils.logger import get_app_logger


@dataclass
class SubmissionRequest:
    """A clock action to send to the HR system."""

    owner_identity: str
    action: SubmissionAction
    timestamp: datetime
    notes: Optional[str] = None


@dataclass
class SubmissionResult:
    """Outcome of one call to the HR system."""

    success: bool
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    response: Dict[str, Any] = field(default_factory=dict)
    deferred_to: Optional[str] = None


class CachedSecret:
    """
    A secret loaded on demand and trusted for ``ttl_seconds``.

    ``get`` reloads once the entry has expired. ``invalidate`` forces the next
    ``get`` to reload, e.g. after the HR API rejected the key.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[Optional[str]]],
        ttl_seconds: float,
        clock: Clock = utcnow,
    ):
        self.loader = loader
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._value: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    def is_expired(self) -> bool:
        return self._expires_at is None or self.clock() >= self._expires_at

    async def get(self) -> Optional[str]:
        if not self.is_expired():
            return self._value
        async with self._lock:
            if self.is_expired():
                self._value = await self.loader()
                self._expires_at = self.clock() + self.ttl
        return self._value

    def invalidate(self) -> None:
        self._expires_at = None


class ExternalGateway(ABC):
    """
    Submits clock actions to the HR system.

    ``submit`` only reports the outcome. ``submit_or_defer`` additionally
    publishes a SubmissionFailedEvent on failure; whoever handles that event
    decides what happens next.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus
        self.logger = get_app_logger()

    @abstractmethod
    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        """Send one action to the HR system."""

    async def submit_or_defer(
        self,
        request: SubmissionRequest,
        conversation_thread_id: Optional[str] = None,
        message_id: Optional[str] = None,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> SubmissionResult:
        result = await self.submit(request)
        if not result.success and self.event_bus is not None:
            handled = await self.event_bus.publish(SubmissionFailedEvent(
                owner_identity=request.owner_identity,
                action=request.action,
                timestamp=request.timestamp,
                error_message=result.error_message,
                status_code=result.status_code,
                conversation_thread_id=conversation_thread_id,
                message_id=message_id,
                user_message=user_message,
                context=dict(context or {}),
            ))
            # A handler that deferred the action returns what it created
            for outcome in handled:
                if getattr(outcome, "id", None):
                    result.deferred_to = outcome.id
                    break
        return result


class HttpHRGateway(ExternalGateway):
    """ExternalGateway over the HR REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: CachedSecret,
        timeout: float = 10.0,
        event_bus: Optional[EventBus] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(event_bus)
        self.api_key = api_key
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @staticmethod
    def _path(action: SubmissionAction) -> str:
        return f"/api/v1/timesheet/{action.value}"

    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        key = await self.api_key.get()
        headers = {"Authorization": f"Bearer {key}"} if key else {}
        payload = {
            "employeeId": request.owner_identity,
            "timestamp": request.timestamp.isoformat(),
            "notes": request.notes,
        }

        try:
            response = await self.client.post(self._path(request.action), json=payload, headers=headers)
        except httpx.TimeoutException as e:
            self.logger.warning(f"HR API timed out for {request.action.value} ({request.owner_identity}): {e}")
            return SubmissionResult(success=False, error_message=f"HR API timed out: {e}", status_code=504)
        except httpx.HTTPError as e:
            self.logger.warning(f"HR API unreachable for {request.action.value} ({request.owner_identity}): {e}")
            return SubmissionResult(success=False, error_message=f"HR API unreachable: {e}", status_code=502)

        if response.status_code == 401:
            self.api_key.invalidate()

        if response.is_success:
            return SubmissionResult(success=True, status_code=response.status_code, response=self._body(response))

        body = self._body(response)
        message = body.get("message") or body.get("error") or response.reason_phrase
        self.logger.warning(
            f"HR API rejected {request.action.value} for {request.owner_identity}: "
            f"{response.status_code} {message}"
        )
        return SubmissionResult(
            success=False,
            error_message=str(message),
            status_code=response.status_code,
            response=body,
        )

    @staticmethod
    def _body(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {"data": data}

    async def close(self) -> None:
        await self.client.aclose()


def settings_key_loader(settings) -> Callable[[], Awaitable[Optional[str]]]:
    """Loader that reads the HR API key from settings on every refresh."""
    async def load() -> Optional[str]:
        return settings.hr_api_key
    return load
