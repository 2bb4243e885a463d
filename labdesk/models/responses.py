"""Request and response models for the HTTP API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from labdesk.models.appointment import EnrichedAppointment
from labdesk.models.status import AppointmentStatus


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str


class TransitionRequest(BaseModel):
    """Optional body for transition endpoints."""

    reason: str | None = None


class SyncResultResponse(BaseModel):
    appointment_updated: bool
    order_synced: bool
    error: str | None = None
    error_kind: str | None = None
    order_id: str | None = None
    order_status: str | None = None
    anomalies: list[str] = []


class DispatchReportResponse(BaseModel):
    """What happened to the effects of a transition or retry run."""

    sync_result: SyncResultResponse | None = None
    delivered: list[str] = []
    failed: list[str] = []


class TransitionResponse(BaseModel):
    """Response model for transition endpoints."""

    appointment: EnrichedAppointment
    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    effects: DispatchReportResponse


class PendingEffectResponse(BaseModel):
    effect_id: str
    kind: str
    appointment_id: str
    attempts: int
    last_error: str | None = None
    payload: dict[str, Any]
