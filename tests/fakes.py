"""In-memory stand-ins for the lab backend used across tests."""

import asyncio
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from labdesk.models.appointment import RawAppointment
from labdesk.models.entities import (
    ApiDoctor,
    ApiDoctorTimeSlot,
    ApiOrderDetail,
    ApiOrderParticipant,
    ApiService,
    ApiTask,
    ApiUser,
    NotificationRequest,
    OrderAggregate,
)

HOME_SERVICE_ID = "SRV_HOME"
FACILITY_SERVICE_ID = "SRV_FACILITY"


def make_raw_appointment(appointment_id: str = "APT_1", **overrides: Any) -> RawAppointment:
    """Raw appointment built from backend-shaped JSON."""
    data = {
        "id": appointment_id,
        "appointment_date": "2026-11-02T09:30:00Z",
        "appointment_type": "PATERNITY",
        "status": False,
        "notes": None,
        "userId": "USER_1",
        "serviceId": None,
        "doctor_time_slot": None,
        "orderId": None,
        "createdAt": "2026-10-01T08:00:00Z",
        "updatedAt": "2026-10-02T08:00:00Z",
    }
    data.update(overrides)
    return RawAppointment.model_validate(data)


def make_order(order_id: str = "ORD_1", **overrides: Any) -> OrderAggregate:
    data = {
        "orderId": order_id,
        "userId": "USER_1",
        "order_code": 1001,
        "status": "pending",
        "total_amount": 2500000.0,
        "payment_method": "bank_transfer",
        "payment_status": "paid",
        "payment_date": "2026-10-01T09:00:00",
        "transaction_id": "TX_1",
        "notes": "Paternity test for two",
        "createdAt": "2026-10-01T08:00:00",
        "updatedAt": "2026-10-01T09:00:00",
    }
    data.update(overrides)
    return OrderAggregate.model_validate(data)


class FakeLabStore:
    """LabStore backed by dicts, with call counting and failure injection.

    Attributes:
        calls: Number of calls per method name
        failures: Method name -> exception raised on every call
        fail_times: Method name -> number of leading calls that raise
        delays: Method name -> seconds to sleep before answering
    """

    def __init__(self):
        self.appointments: dict[str, RawAppointment] = {}
        self.users: dict[str, ApiUser] = {}
        self.services: dict[str, ApiService] = {}
        self.time_slots: dict[str, ApiDoctorTimeSlot] = {}
        self.doctors: dict[str, ApiDoctor] = {}
        self.orders: dict[str, OrderAggregate] = {}
        self.order_details: dict[str, list[ApiOrderDetail]] = {}
        self.participants: dict[str, list[ApiOrderParticipant]] = {}
        self.tasks: dict[str, list[ApiTask]] = {}

        self.appointment_patches: list[tuple[str, dict[str, Any]]] = []
        self.order_payloads: list[tuple[str, dict[str, Any]]] = []
        self.notifications: list[tuple[str, NotificationRequest]] = []
        self.task_updates: list[tuple[str, dict[str, Any]]] = []

        self.list_available = True
        self.batch_users_available = True
        self.appointment_update_result = True
        self.order_update_result = True
        self.notification_result = True
        self.task_update_result = True
        self.tasks_available = True
        # Simulates a backend that loses the amount on a partial update
        self.reset_amount_on_update = False

        self.calls: Counter[str] = Counter()
        self.failures: dict[str, Exception] = {}
        self.fail_times: dict[str, int] = {}
        self.delays: dict[str, float] = {}

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.failures:
            raise self.failures[name]
        if self.fail_times.get(name, 0) > 0:
            self.fail_times[name] -= 1
            raise ConnectionError(f"{name} unavailable")

    def add_user(self, user_id: str = "USER_1", full_name: str = "Nguyen Van A", **fields: Any) -> ApiUser:
        user = ApiUser(
            id=user_id,
            username=fields.pop("username", user_id.lower()),
            email=fields.pop("email", f"{user_id.lower()}@example.com"),
            full_name=full_name,
            phone=fields.pop("phone", "0901234567"),
            **fields,
        )
        self.users[user_id] = user
        return user

    def add_services(self) -> None:
        self.services[HOME_SERVICE_ID] = ApiService(
            service_id=HOME_SERVICE_ID,
            service_name="Home paternity test",
            service_category="Paternity",
            collection_method=1,
            required_legal_document=False,
        )
        self.services[FACILITY_SERVICE_ID] = ApiService(
            service_id=FACILITY_SERVICE_ID,
            service_name="Legal paternity test",
            service_category="Paternity",
            collection_method=2,
            required_legal_document=True,
        )

    def add_order(self, order: OrderAggregate, service_id: str | None = None) -> OrderAggregate:
        self.orders[order.order_id] = order
        if service_id is not None:
            self.order_details[order.order_id] = [
                ApiOrderDetail(id=f"{order.order_id}_D1", dna_service_id=service_id, order_id=order.order_id)
            ]
        return order

    def add_task(
        self, task_id: str, order_detail_id: str, status: str = "PENDING", task_type: str = "TESTING"
    ) -> ApiTask:
        task = ApiTask(id=task_id, task_type=task_type, status=status, order_detail_id=order_detail_id)
        self.tasks.setdefault(order_detail_id, []).append(task)
        return task

    def add_doctor(self, slot_id: str = "SLOT_1", doctor_id: str = "DOC_1") -> None:
        self.time_slots[slot_id] = ApiDoctorTimeSlot(
            id=slot_id,
            day_of_week=1,
            start_time="08:00",
            end_time="09:00",
            doctor_id=doctor_id,
        )
        self.doctors[doctor_id] = ApiDoctor(doctor_id=doctor_id, doctor_name="Dr. Tran")

    async def list_appointments(self) -> list[RawAppointment] | None:
        await self._enter("list_appointments")
        return list(self.appointments.values()) if self.list_available else None

    async def get_appointment(self, appointment_id: str) -> RawAppointment | None:
        await self._enter("get_appointment")
        return self.appointments.get(appointment_id)

    async def update_appointment(self, appointment_id: str, patch: dict[str, Any]) -> bool:
        await self._enter("update_appointment")
        self.appointment_patches.append((appointment_id, patch))
        return self.appointment_update_result

    async def delete_appointment(self, appointment_id: str) -> bool:
        await self._enter("delete_appointment")
        return self.appointments.pop(appointment_id, None) is not None

    async def get_user(self, user_id: str) -> ApiUser | None:
        await self._enter("get_user")
        return self.users.get(user_id)

    async def get_users(self, user_ids: Sequence[str]) -> list[ApiUser] | None:
        await self._enter("get_users")
        if not self.batch_users_available:
            return None
        return [self.users[user_id] for user_id in user_ids if user_id in self.users]

    async def get_service(self, service_id: str) -> ApiService | None:
        await self._enter("get_service")
        return self.services.get(service_id)

    async def get_time_slot(self, slot_id: str) -> ApiDoctorTimeSlot | None:
        await self._enter("get_time_slot")
        return self.time_slots.get(slot_id)

    async def get_doctor(self, doctor_id: str) -> ApiDoctor | None:
        await self._enter("get_doctor")
        return self.doctors.get(doctor_id)

    async def get_order(self, order_id: str) -> OrderAggregate | None:
        await self._enter("get_order")
        return self.orders.get(order_id)

    async def update_order(self, order_id: str, payload: dict[str, Any]) -> bool:
        await self._enter("update_order")
        self.order_payloads.append((order_id, payload))
        if not self.order_update_result:
            return False

        current = self.orders[order_id]
        data = {**payload, "orderId": order_id, "userId": current.user_id}
        if self.reset_amount_on_update:
            data["total_amount"] = 0
        self.orders[order_id] = OrderAggregate.model_validate(data)
        return True

    async def get_order_details(self, order_id: str) -> list[ApiOrderDetail]:
        await self._enter("get_order_details")
        return self.order_details.get(order_id, [])

    async def get_participants(self, order_id: str) -> list[ApiOrderParticipant] | None:
        await self._enter("get_participants")
        return self.participants.get(order_id)

    async def get_tasks(self, order_detail_id: str) -> list[ApiTask] | None:
        await self._enter("get_tasks")
        if not self.tasks_available:
            return None
        return list(self.tasks.get(order_detail_id, []))

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> bool:
        await self._enter("update_task")
        self.task_updates.append((task_id, payload))
        if not self.task_update_result:
            return False

        for detail_id, tasks in self.tasks.items():
            self.tasks[detail_id] = [
                task.model_copy(update={"status": payload["status"], "completed_date": payload["completedDate"]})
                if task.id == task_id
                else task
                for task in tasks
            ]
        return True

    async def create_notification(self, user_id: str, notification: NotificationRequest) -> bool:
        await self._enter("create_notification")
        if self.notification_result:
            self.notifications.append((user_id, notification))
        return self.notification_result


class FixedClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleeper:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


FIXED_NOW = datetime(2026, 10, 18, 10, 0, tzinfo=UTC)
