"""Lab backend API client with rate limiting and envelope handling."""

import asyncio
import os
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel, ValidationError

from labdesk.models.appointment import RawAppointment
from labdesk.models.entities import (
    ApiDoctor,
    ApiDoctorTimeSlot,
    ApiEnvelope,
    ApiOrderDetail,
    ApiOrderParticipant,
    ApiService,
    ApiTask,
    ApiUser,
    NotificationRequest,
    OrderAggregate,
)
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

SUCCESS_CODE = 200


class LabApiError(Exception):
    """Base exception for lab backend client errors."""


class LabApiTransportError(LabApiError):
    """Raised when the backend cannot be reached or answers with an HTTP error."""


class LabApiResponseError(LabApiError):
    """Raised when the backend answers with something that is not a valid envelope."""


@dataclass
class LabApiConfig:
    """Configuration for the lab backend client."""

    base_url: str = field(
        default_factory=lambda: os.getenv("LAB_API_BASE_URL", "http://localhost:8080/dna_service")
    )
    api_token: str | None = field(default_factory=lambda: os.getenv("LAB_API_TOKEN"))
    timeout: float = 15.0
    requests_per_minute: int = field(
        default_factory=lambda: int(os.getenv("LAB_API_REQUESTS_PER_MINUTE", "600"))
    )


class LabApiRateLimiter:
    """Moving-window limiter for outbound backend requests."""

    def __init__(self, requests_per_minute: int = 600):
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)
        self.request_limit = parse(f"{requests_per_minute}/minute")

    async def check_rate_limit(self, identifier: str = "lab_api") -> None:
        """Wait until a request slot is free."""
        while not self.limiter.hit(self.request_limit, identifier):
            window_stats = self.limiter.get_window_stats(self.request_limit, identifier)
            wait_time = max(0.0, window_stats.reset_time - time.time())
            logger.warning(f"Backend request rate limit reached, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time or 0.05)


class LabStore(Protocol):
    """Per-resource lookups against the lab backend.

    Soft failures (any envelope code other than 200, or nothing found) come back
    as None, an empty list or False. Transport problems and malformed responses
    raise LabApiError subclasses.
    """

    async def list_appointments(self) -> list[RawAppointment] | None: ...

    async def get_appointment(self, appointment_id: str) -> RawAppointment | None: ...

    async def update_appointment(self, appointment_id: str, patch: dict[str, Any]) -> bool: ...

    async def delete_appointment(self, appointment_id: str) -> bool: ...

    async def get_user(self, user_id: str) -> ApiUser | None: ...

    async def get_users(self, user_ids: Sequence[str]) -> list[ApiUser] | None: ...

    async def get_service(self, service_id: str) -> ApiService | None: ...

    async def get_time_slot(self, slot_id: str) -> ApiDoctorTimeSlot | None: ...

    async def get_doctor(self, doctor_id: str) -> ApiDoctor | None: ...

    async def get_order(self, order_id: str) -> OrderAggregate | None: ...

    async def update_order(self, order_id: str, payload: dict[str, Any]) -> bool: ...

    async def get_order_details(self, order_id: str) -> list[ApiOrderDetail]: ...

    async def get_participants(self, order_id: str) -> list[ApiOrderParticipant] | None: ...

    async def get_tasks(self, order_detail_id: str) -> list[ApiTask] | None: ...

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> bool: ...

    async def create_notification(self, user_id: str, notification: NotificationRequest) -> bool: ...


class LabApiClient:
    """HTTP implementation of LabStore over the backend's JSON API."""

    def __init__(
        self,
        config: LabApiConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: LabApiRateLimiter | None = None,
    ):
        """Initialize the client.

        Args:
            config: Client configuration (defaults read from the environment)
            http_client: Pre-built httpx client, mainly for tests
            rate_limiter: Shared limiter, one is created when omitted
        """
        self.config = config or LabApiConfig()
        self.rate_limiter = rate_limiter or LabApiRateLimiter(self.config.requests_per_minute)

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"

        self.http = http_client or httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            headers=headers,
            timeout=self.config.timeout,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> ApiEnvelope:
        """Send a request and parse the response envelope."""
        await self.rate_limiter.check_rate_limit()

        logger.debug(f"{method} {path}")
        try:
            response = await self.http.request(method, path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise LabApiTransportError(f"{method} {path} failed: {e}") from e

        try:
            return ApiEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise LabApiResponseError(f"{method} {path} returned a malformed envelope") from e

    async def _result(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any | None:
        """Unwrapped envelope result, None on a soft failure."""
        envelope = await self._request(method, path, payload)
        if envelope.code != SUCCESS_CODE:
            logger.warning(f"{method} {path} answered code {envelope.code}: {envelope.message}")
            return None
        return envelope.result

    def _parse[M: BaseModel](self, model: type[M], data: Any, path: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise LabApiResponseError(f"Unexpected {model.__name__} payload from {path}") from e

    def _parse_list[M: BaseModel](self, model: type[M], data: Any, path: str) -> list[M]:
        if not isinstance(data, list):
            raise LabApiResponseError(f"Expected a list of {model.__name__} from {path}")
        return [self._parse(model, item, path) for item in data]

    async def _get_one[M: BaseModel](self, model: type[M], path: str) -> M | None:
        result = await self._result("GET", path)
        return self._parse(model, result, path) if result is not None else None

    async def _get_many[M: BaseModel](self, model: type[M], path: str) -> list[M] | None:
        result = await self._result("GET", path)
        return self._parse_list(model, result, path) if result is not None else None

    async def list_appointments(self) -> list[RawAppointment] | None:
        return await self._get_many(RawAppointment, "/appointment/all")

    async def get_appointment(self, appointment_id: str) -> RawAppointment | None:
        return await self._get_one(RawAppointment, f"/appointment/{appointment_id}")

    async def update_appointment(self, appointment_id: str, patch: dict[str, Any]) -> bool:
        envelope = await self._request("PUT", f"/appointment/{appointment_id}", patch)
        if envelope.code != SUCCESS_CODE:
            logger.warning(f"Appointment {appointment_id} update rejected: {envelope.message}")
            return False
        return True

    async def delete_appointment(self, appointment_id: str) -> bool:
        envelope = await self._request("DELETE", f"/appointment/{appointment_id}")
        return envelope.code == SUCCESS_CODE

    async def get_user(self, user_id: str) -> ApiUser | None:
        return await self._get_one(ApiUser, f"/user/{user_id}")

    async def get_users(self, user_ids: Sequence[str]) -> list[ApiUser] | None:
        """Batched user lookup; None when the backend declines the batch."""
        path = "/user/batch"
        result = await self._result("POST", path, {"ids": list(user_ids)})
        return self._parse_list(ApiUser, result, path) if result is not None else None

    async def list_users(self) -> list[ApiUser] | None:
        return await self._get_many(ApiUser, "/user")

    async def get_profile(self) -> ApiUser | None:
        """Account the configured token belongs to."""
        return await self._get_one(ApiUser, "/user/profile")

    async def get_service(self, service_id: str) -> ApiService | None:
        return await self._get_one(ApiService, f"/service/{service_id}")

    async def get_time_slot(self, slot_id: str) -> ApiDoctorTimeSlot | None:
        return await self._get_one(ApiDoctorTimeSlot, f"/doctor-time-slots/{slot_id}")

    async def get_doctor(self, doctor_id: str) -> ApiDoctor | None:
        return await self._get_one(ApiDoctor, f"/doctors/{doctor_id}")

    async def get_order(self, order_id: str) -> OrderAggregate | None:
        return await self._get_one(OrderAggregate, f"/orders/{order_id}")

    async def update_order(self, order_id: str, payload: dict[str, Any]) -> bool:
        """Replace the order record; fields missing from the payload are reset upstream."""
        envelope = await self._request("PUT", f"/orders/{order_id}", payload)
        if envelope.code != SUCCESS_CODE:
            logger.warning(f"Order {order_id} update rejected with code {envelope.code}: {envelope.message}")
            return False
        return True

    async def get_order_details(self, order_id: str) -> list[ApiOrderDetail]:
        return await self._get_many(ApiOrderDetail, f"/order-details/{order_id}/all") or []

    async def get_participants(self, order_id: str) -> list[ApiOrderParticipant] | None:
        return await self._get_many(ApiOrderParticipant, f"/OrderParticipants/order/{order_id}")

    async def get_tasks(self, order_detail_id: str) -> list[ApiTask] | None:
        return await self._get_many(ApiTask, f"/tasks/order-detail/{order_detail_id}")

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> bool:
        envelope = await self._request("PUT", f"/tasks/{task_id}", payload)
        if envelope.code != SUCCESS_CODE:
            logger.warning(f"Task {task_id} update rejected with code {envelope.code}: {envelope.message}")
            return False
        return True

    async def create_notification(self, user_id: str, notification: NotificationRequest) -> bool:
        payload = {**notification.model_dump(), "userId": user_id}
        envelope = await self._request("POST", "/notifications", payload)
        return envelope.code == SUCCESS_CODE
