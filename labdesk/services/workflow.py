"""Explicit appointment transitions.

Each transition validates the move against the location's flow, persists the
new status as an override record and returns the updated appointment with the
side effects still to be carried out. Nothing here talks to the backend.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from cuid2 import cuid_wrapper

from labdesk.models.appointment import EnrichedAppointment, PersistedStatusRecord
from labdesk.models.status import AppointmentStatus
from labdesk.services import status_machine
from labdesk.services.status_store import StatusStore
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

CONFIRMED_NOTE = "Appointment confirmed by staff"
CANCELLED_NOTE = "Appointment cancelled by staff"
TASKS_COMPLETED_NOTE = "Completed by staff"


class InvalidTransitionError(ValueError):
    """Raised when an action is not allowed from the appointment's current status."""

    def __init__(self, appointment_id: str, action: str, status: AppointmentStatus):
        super().__init__(f"Cannot {action} appointment {appointment_id} while it is {status}")
        self.appointment_id = appointment_id
        self.action = action
        self.status = status


class TransitionAction(StrEnum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    ADVANCE = "advance"
    COMPLETE = "complete"


class EffectKind(StrEnum):
    ORDER_SYNC = "order_sync"
    TASK_COMPLETION = "task_completion"
    NOTIFICATION = "notification"


class NotificationType(StrEnum):
    STATUS_UPDATE = "StatusUpdate"
    RESULT_READY = "ResultReady"


@dataclass
class PostTransitionEffect:
    """Side effect owed to the backend after a status change."""

    kind: EffectKind
    appointment_id: str
    payload: dict[str, Any]
    effect_id: str = field(default_factory=cuid)
    attempts: int = 0
    last_error: str | None = None


@dataclass
class TransitionOutcome:
    """New appointment state plus the effects that must follow it."""

    appointment: EnrichedAppointment
    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    record: PersistedStatusRecord
    effects: list[PostTransitionEffect]


class AppointmentWorkflow:
    """Applies staff actions to appointments."""

    def __init__(self, status_store: StatusStore, clock: Callable[[], datetime] | None = None):
        """Initialize the workflow.

        Args:
            status_store: Where status overrides are persisted
            clock: Source of transition timestamps (defaults to UTC now)
        """
        self.status_store = status_store
        self.clock = clock or (lambda: datetime.now(UTC))

    def confirm(self, appointment: EnrichedAppointment) -> TransitionOutcome:
        """Pending -> DeliveringKit at home, Pending -> Confirmed in a facility."""
        if appointment.status is not AppointmentStatus.PENDING:
            raise InvalidTransitionError(appointment.id, TransitionAction.CONFIRM, appointment.status)

        new_status = status_machine.confirmed_status(appointment.location_type)
        return self._apply(
            appointment,
            new_status,
            appointment_patch={"status": True, "notes": CONFIRMED_NOTE},
            notification=self._notification(
                appointment,
                "Appointment confirmed",
                f"Your appointment for {appointment.service_name} has been confirmed",
                NotificationType.STATUS_UPDATE,
            ),
        )

    def cancel(self, appointment: EnrichedAppointment, reason: str | None = None) -> TransitionOutcome:
        """Any non-terminal status -> Cancelled."""
        if status_machine.is_terminal(appointment.status):
            raise InvalidTransitionError(appointment.id, TransitionAction.CANCEL, appointment.status)

        note = reason or CANCELLED_NOTE
        return self._apply(
            appointment,
            AppointmentStatus.CANCELLED,
            appointment_patch={"status": False, "notes": note},
            notification=self._notification(
                appointment,
                "Appointment cancelled",
                f"Your appointment for {appointment.service_name} has been cancelled: {note}",
                NotificationType.STATUS_UPDATE,
            ),
        )

    def advance(self, appointment: EnrichedAppointment) -> TransitionOutcome:
        """Move to the next step of the appointment's flow."""
        new_status = status_machine.advance(appointment.status, appointment.location_type)
        if new_status is None:
            raise InvalidTransitionError(appointment.id, TransitionAction.ADVANCE, appointment.status)

        return self._apply(appointment, new_status)

    def complete(self, appointment: EnrichedAppointment) -> TransitionOutcome:
        """Testing -> Completed.

        Besides the order sync and the result notification, every staff task
        of the appointment's order is marked completed when it has an order.
        """
        if appointment.status is not AppointmentStatus.TESTING:
            raise InvalidTransitionError(appointment.id, TransitionAction.COMPLETE, appointment.status)

        task_completion = None
        order_id = appointment.resolved_order_id
        if order_id:
            task_completion = {
                "order_id": order_id,
                "completed_date": self.clock().isoformat(),
                "notes": TASKS_COMPLETED_NOTE,
            }

        return self._apply(
            appointment,
            AppointmentStatus.COMPLETED,
            task_completion=task_completion,
            notification=self._notification(
                appointment,
                "Test result ready",
                f"The result of your {appointment.service_name} test is ready",
                NotificationType.RESULT_READY,
            ),
        )

    def apply(
        self, action: TransitionAction | str, appointment: EnrichedAppointment, reason: str | None = None
    ) -> TransitionOutcome:
        """Dispatch a named action.

        Raises:
            ValueError: If the action name is unknown
            InvalidTransitionError: If the action is not allowed from the current status
        """
        match TransitionAction(action):
            case TransitionAction.CONFIRM:
                return self.confirm(appointment)
            case TransitionAction.CANCEL:
                return self.cancel(appointment, reason)
            case TransitionAction.ADVANCE:
                return self.advance(appointment)
            case TransitionAction.COMPLETE:
                return self.complete(appointment)

    def finalize(self, appointment_id: str) -> bool:
        """Drop the stored override once the backend record is authoritative again."""
        return self.status_store.clear(appointment_id)

    def _apply(
        self,
        appointment: EnrichedAppointment,
        new_status: AppointmentStatus,
        appointment_patch: dict[str, Any] | None = None,
        task_completion: dict[str, Any] | None = None,
        notification: dict[str, Any] | None = None,
    ) -> TransitionOutcome:
        location = appointment.location_type
        now = self.clock()
        step = status_machine.step_index(new_status, location)
        steps = status_machine.completed_steps(new_status, location)

        record = PersistedStatusRecord(
            appointment_id=appointment.id,
            status=new_status,
            current_step=step,
            completed_steps=steps,
            last_updated=now,
        )
        self.status_store.save(record)

        updated = appointment.model_copy(
            update={
                "status": new_status,
                "current_step_index": step,
                "completed_steps": steps,
                "last_status_update": now,
            }
        )

        sync_payload: dict[str, Any] = {"new_status": new_status.value}
        if appointment_patch is not None:
            sync_payload["appointment_patch"] = appointment_patch
        effects = [PostTransitionEffect(EffectKind.ORDER_SYNC, appointment.id, sync_payload)]
        if task_completion is not None:
            effects.append(PostTransitionEffect(EffectKind.TASK_COMPLETION, appointment.id, task_completion))
        if notification is not None:
            effects.append(PostTransitionEffect(EffectKind.NOTIFICATION, appointment.id, notification))

        logger.info(f"Appointment {appointment.id}: {appointment.status} -> {new_status} ({len(effects)} effects)")
        return TransitionOutcome(
            appointment=updated,
            previous_status=appointment.status,
            new_status=new_status,
            record=record,
            effects=effects,
        )

    @staticmethod
    def _notification(
        appointment: EnrichedAppointment, title: str, message: str, notification_type: NotificationType
    ) -> dict[str, Any]:
        return {
            "user_id": appointment.owner_user_id,
            "title": title,
            "message": message,
            "type": notification_type.value,
        }
