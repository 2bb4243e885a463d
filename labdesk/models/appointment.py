"""Appointment data models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from labdesk.models.entities import ApiOrderParticipant, OrderAggregate
from labdesk.models.status import AppointmentStatus, LegalFlag, LocationType


class RawAppointment(BaseModel):
    """Appointment exactly as stored by the backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    scheduled_at: datetime = Field(alias="appointment_date")
    kind_code: str = Field(default="", alias="appointment_type")
    confirmed: bool = Field(default=False, alias="status")
    notes: str | None = None
    owner_user_id: str = Field(alias="userId")
    service_id: str | None = Field(default=None, alias="serviceId")
    doctor_time_slot_id: str | None = Field(default=None, alias="doctor_time_slot")
    order_id: str | None = Field(default=None, alias="orderId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class DoctorInfo(BaseModel):
    """Doctor assigned through the appointment's time slot."""

    name: str
    time_slot: str
    day_of_week: str


class EnrichedAppointment(BaseModel):
    """Display-ready appointment joined with user, service, doctor and order data.

    Instances are frozen; status changes produce updated copies.
    """

    model_config = ConfigDict(frozen=True)

    # Raw appointment fields
    id: str
    scheduled_at: datetime
    kind_code: str
    confirmed: bool
    notes: str | None = None
    owner_user_id: str
    service_id: str | None = None
    doctor_time_slot_id: str | None = None
    order_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Denormalized display data
    customer_name: str
    phone: str
    email: str
    service_name: str
    service_category: str
    location_type: LocationType
    legal_flag: LegalFlag
    doctor_info: DoctorInfo | None = None
    participants: list[ApiOrderParticipant] = Field(default_factory=list)
    order_snapshot: OrderAggregate | None = None

    # Workflow position
    status: AppointmentStatus
    current_step_index: int
    completed_steps: list[str] = Field(default_factory=list)
    last_status_update: datetime | None = None

    # True when built from raw fields only because enrichment failed
    degraded: bool = False

    @property
    def resolved_order_id(self) -> str | None:
        """Order id from the appointment, else from the order snapshot."""
        if self.order_id:
            return self.order_id
        return self.order_snapshot.order_id if self.order_snapshot else None


class PersistedStatusRecord(BaseModel):
    """Locally persisted status override for one appointment."""

    model_config = ConfigDict(populate_by_name=True)

    appointment_id: str = Field(alias="appointmentId")
    status: AppointmentStatus
    current_step: int = Field(alias="currentStep")
    completed_steps: list[str] = Field(default_factory=list, alias="completedSteps")
    last_updated: datetime = Field(alias="lastUpdated")
