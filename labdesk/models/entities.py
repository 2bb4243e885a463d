"""Backend wire entities.

Field aliases match the backend's JSON; attributes are snake_case.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for models parsed from backend responses."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ApiEnvelope(WireModel):
    """Response envelope shared by every backend endpoint."""

    code: int
    message: str = ""
    result: Any = None


class ApiRole(WireModel):
    name: str
    description: str = ""


class ApiUser(WireModel):
    """Backend user account."""

    id: str
    username: str = ""
    email: str = ""
    full_name: str = ""
    phone: str | None = None
    dob: str | None = None
    roles: list[ApiRole] = Field(default_factory=list)

    # Set only on placeholders synthesized when the store is unreachable
    is_fallback: bool = Field(default=False, exclude=True)


class ApiService(WireModel):
    """Lab test service offered to customers."""

    service_id: str = Field(alias="serviceId")
    service_name: str = ""
    service_description: str = ""
    service_category: str = ""
    service_type: str = ""
    test_price: float = 0
    duration_days: int = 0
    collection_method: int = 0
    required_legal_document: bool = False
    is_active: bool = True


class ApiDoctor(WireModel):
    doctor_id: str = Field(alias="doctorId")
    doctor_code: str = Field(default="", alias="doctorCode")
    doctor_name: str = Field(default="", alias="doctorName")
    doctor_email: str = Field(default="", alias="doctorEmail")
    doctor_phone: str = Field(default="", alias="doctorPhone")
    is_active: bool = Field(default=True, alias="isActive")


class ApiDoctorTimeSlot(WireModel):
    id: str
    day_of_week: int = Field(alias="dayOfWeek")
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    is_available: bool = Field(default=True, alias="isAvailable")
    doctor_id: str = Field(alias="doctorId")


class ApiOrderDetail(WireModel):
    """One line of an order, pointing at the ordered service."""

    id: str
    quantity: int = 1
    unit_price: float = 0
    subtotal: float = 0
    note: str = ""
    dna_service_id: str = Field(alias="dnaServiceId")
    order_id: str = Field(default="", alias="orderId")


class ApiOrderParticipant(WireModel):
    """Person whose sample is part of an order."""

    id: str
    participant_name: str
    relationship: str = ""
    age: int | None = None
    note: str | None = None
    order_id: str = ""


class OrderAggregate(WireModel):
    """Order record owned by the ordering side of the backend.

    The backend replaces the whole record on update, so every field is kept
    exactly as read (timestamps stay as the raw strings).
    """

    order_id: str = Field(alias="orderId")
    user_id: str | None = Field(default=None, alias="userId")
    order_code: int | None = None
    status_code: str = Field(default="", alias="status")
    total_amount: float = 0
    payment_method: str | None = None
    payment_status: str | None = None
    payment_date: str | None = None
    transaction_id: str | None = None
    notes: str | None = None
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")

    def to_update_payload(self) -> dict[str, Any]:
        """Full-record payload for the order update endpoint."""
        return self.model_dump(by_alias=True, exclude={"order_id", "user_id"})


class NotificationRequest(WireModel):
    title: str
    message: str
    type: str
    is_read: bool = False


class ApiTask(WireModel):
    """Staff task attached to one line of an order."""

    id: str
    task_title: str = ""
    task_type: str = ""
    status: str = ""
    due_date: str | None = Field(default=None, alias="dueDate")
    completed_date: str | None = Field(default=None, alias="completedDate")
    notes: str | None = None
    order_detail_id: str | None = Field(default=None, alias="orderDetailId")
