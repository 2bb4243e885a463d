"""API endpoints for the lab back office."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException

from labdesk import __version__
from labdesk.models.appointment import EnrichedAppointment
from labdesk.models.responses import (
    DispatchReportResponse,
    HealthResponse,
    PendingEffectResponse,
    SyncResultResponse,
    TransitionRequest,
    TransitionResponse,
)
from labdesk.services.back_office import AppointmentNotFoundError, BackOffice, get_back_office
from labdesk.services.batch import AppointmentListUnavailableError
from labdesk.services.effects import DispatchReport
from labdesk.services.workflow import InvalidTransitionError, TransitionAction
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def to_report_response(report: DispatchReport) -> DispatchReportResponse:
    return DispatchReportResponse(
        sync_result=SyncResultResponse(**report.sync_result.as_dict()) if report.sync_result else None,
        delivered=report.delivered,
        failed=report.failed,
    )


@router.get("/appointments", response_model=list[EnrichedAppointment], tags=["Appointments"])
async def list_appointments(back_office: BackOffice = Depends(get_back_office)) -> list[EnrichedAppointment]:
    """List every appointment with customer, doctor, service and order data."""
    try:
        return await back_office.list_appointments()
    except AppointmentListUnavailableError as e:
        logger.error(f"Appointment list unavailable: {e}")
        raise HTTPException(status_code=503, detail="Appointment list is temporarily unavailable") from e


@router.get("/appointments/{appointment_id}", response_model=EnrichedAppointment, tags=["Appointments"])
async def get_appointment(
    appointment_id: str, back_office: BackOffice = Depends(get_back_office)
) -> EnrichedAppointment:
    appointment = await back_office.get_appointment(appointment_id)
    if appointment is None:
        raise HTTPException(status_code=404, detail=f"Appointment {appointment_id} not found")
    return appointment


@router.post(
    "/appointments/{appointment_id}/{action}",
    response_model=TransitionResponse,
    tags=["Appointments"],
)
async def transition_appointment(
    appointment_id: str,
    action: TransitionAction,
    request: TransitionRequest | None = None,
    back_office: BackOffice = Depends(get_back_office),
) -> TransitionResponse:
    """Confirm, cancel, advance or complete an appointment.

    The status change stands even when its order sync or notification fails;
    those effects are queued in the outbox and reported in the response.
    """
    reason = request.reason if request else None
    try:
        result = await back_office.transition(appointment_id, action, reason)
    except AppointmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidTransitionError as e:
        logger.warning(f"Rejected {action} for appointment {appointment_id}: {e}")
        raise HTTPException(status_code=409, detail=str(e)) from e

    outcome = result.outcome
    return TransitionResponse(
        appointment=outcome.appointment,
        previous_status=outcome.previous_status,
        new_status=outcome.new_status,
        effects=to_report_response(result.report),
    )


@router.delete("/appointments/{appointment_id}", status_code=204, tags=["Appointments"])
async def delete_appointment(appointment_id: str, back_office: BackOffice = Depends(get_back_office)) -> None:
    if not await back_office.delete_appointment(appointment_id):
        raise HTTPException(status_code=502, detail=f"Backend refused to delete appointment {appointment_id}")


@router.get("/outbox", response_model=list[PendingEffectResponse], tags=["Outbox"])
async def list_pending_effects(back_office: BackOffice = Depends(get_back_office)) -> list[PendingEffectResponse]:
    """Effects that failed after a transition and are waiting for a retry."""
    return [
        PendingEffectResponse(
            effect_id=entry.effect.effect_id,
            kind=entry.effect.kind.value,
            appointment_id=entry.effect.appointment_id,
            attempts=entry.effect.attempts,
            last_error=entry.effect.last_error,
            payload=entry.effect.payload,
        )
        for entry in back_office.pending_effects()
    ]


@router.post("/outbox/retry", response_model=DispatchReportResponse, tags=["Outbox"])
async def retry_pending_effects(back_office: BackOffice = Depends(get_back_office)) -> DispatchReportResponse:
    report = await back_office.retry_effects()
    return to_report_response(report)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
