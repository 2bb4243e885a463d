"""Keeps the order aggregate in step with appointment status changes."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from labdesk.clients.lab_api import LabStore
from labdesk.models.appointment import EnrichedAppointment
from labdesk.models.entities import OrderAggregate
from labdesk.models.status import AppointmentStatus
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

ORDER_STATUS_BY_APPOINTMENT_STATUS: dict[AppointmentStatus, str] = {
    AppointmentStatus.PENDING: "pending",
    AppointmentStatus.CONFIRMED: "confirmed",
    AppointmentStatus.DELIVERING_KIT: "processing",
    AppointmentStatus.KIT_DELIVERED: "processing",
    AppointmentStatus.SAMPLE_RECEIVED: "processing",
    AppointmentStatus.TESTING: "processing",
    AppointmentStatus.COMPLETED: "completed",
    AppointmentStatus.CANCELLED: "cancelled",
}

# Order lifecycle; moves outside it are reported but not blocked
ORDER_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
    "paid": frozenset({"processing"}),
    "unpaid": frozenset({"paid", "cancelled"}),
}


class OrderSyncError(Exception):
    """Raised when an order could not be brought in line with its appointment."""


class MonetaryPreservationError(OrderSyncError):
    """Raised when an order's total amount changed during a status-only update."""

    def __init__(self, order_id: str, expected: float, actual: float):
        super().__init__(f"Order {order_id} total amount changed from {expected} to {actual} during status sync")
        self.order_id = order_id
        self.expected = expected
        self.actual = actual


class SyncErrorKind(StrEnum):
    ORDER_NOT_FOUND = "order_not_found"
    UPDATE_REJECTED = "update_rejected"
    TRANSPORT = "transport"
    MONETARY_PRESERVATION = "monetary_preservation"
    APPOINTMENT_UPDATE_FAILED = "appointment_update_failed"


@dataclass
class SyncResult:
    """Outcome of an appointment/order synchronization."""

    appointment_updated: bool
    order_synced: bool
    error: str | None = None
    error_kind: SyncErrorKind | None = None
    order_id: str | None = None
    order_status: str | None = None
    anomalies: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.appointment_updated and self.order_synced

    def as_dict(self) -> dict[str, Any]:
        return {
            "appointment_updated": self.appointment_updated,
            "order_synced": self.order_synced,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "order_id": self.order_id,
            "order_status": self.order_status,
            "anomalies": list(self.anomalies),
        }


def map_order_status(status: AppointmentStatus | str) -> str | None:
    """Order status code for an appointment status, None when there is no mapping."""
    try:
        return ORDER_STATUS_BY_APPOINTMENT_STATUS.get(AppointmentStatus(status))
    except ValueError:
        return None


def can_update_order_status(current_status: str, new_status: str) -> bool:
    return new_status in ORDER_STATUS_TRANSITIONS.get(current_status, frozenset())


def build_order_update(order: OrderAggregate, status_code: str) -> dict[str, Any]:
    """Full replacement payload changing only the status.

    The backend's order update replaces the whole record, so every other field
    is copied from the current order; leaving one out resets it upstream
    (a missing total_amount comes back as 0).
    """
    return order.model_copy(update={"status_code": status_code}).to_update_payload()


class OrderSynchronizer:
    """Read-merge-write synchronization of order status from appointment status."""

    def __init__(self, store: LabStore, verify_amount: bool = True):
        """Initialize the synchronizer.

        Args:
            store: Backend store holding the orders
            verify_amount: Re-read the order after writing and check its total amount
        """
        self.store = store
        self.verify_amount = verify_amount

    async def sync_appointment_status(
        self,
        appointment_id: str,
        appointment: EnrichedAppointment,
        new_status: AppointmentStatus,
    ) -> SyncResult:
        """Propagate an appointment status to its order.

        Never raises for sync failures and never rolls back the appointment
        side; the result says what happened.
        """
        order_id = appointment.resolved_order_id
        if not order_id:
            logger.info(f"Appointment {appointment_id} has no order, nothing to sync")
            return SyncResult(appointment_updated=True, order_synced=True)

        order_status = map_order_status(new_status)
        if order_status is None:
            logger.info(f"No order status mapping for appointment status {new_status}")
            return SyncResult(appointment_updated=True, order_synced=True, order_id=order_id)

        result = SyncResult(
            appointment_updated=True,
            order_synced=False,
            order_id=order_id,
            order_status=order_status,
        )

        try:
            current = await self.store.get_order(order_id)
            if current is None:
                result.error = f"Order {order_id} not found"
                result.error_kind = SyncErrorKind.ORDER_NOT_FOUND
                logger.error(f"Cannot sync appointment {appointment_id}: {result.error}")
                return result

            if current.status_code == order_status:
                logger.info(f"Order {order_id} already {order_status}")
            elif not can_update_order_status(current.status_code, order_status):
                anomaly = f"Order {order_id} moves from {current.status_code or 'unset'} to {order_status}"
                result.anomalies.append(anomaly)
                logger.warning(f"Unexpected order transition: {anomaly}")

            payload = build_order_update(current, order_status)
            if not await self.store.update_order(order_id, payload):
                result.error = f"Order {order_id} update was rejected"
                result.error_kind = SyncErrorKind.UPDATE_REJECTED
                logger.error(f"Failed to sync appointment {appointment_id} to order {order_id}")
                return result

            if self.verify_amount:
                await self._verify_amount(order_id, current.total_amount)

        except MonetaryPreservationError as e:
            result.error = str(e)
            result.error_kind = SyncErrorKind.MONETARY_PRESERVATION
            logger.error(f"MONETARY PRESERVATION VIOLATION for appointment {appointment_id}: {e}")
            return result
        except Exception as e:
            result.error = f"Order sync failed: {e}"
            result.error_kind = SyncErrorKind.TRANSPORT
            logger.error(f"Error syncing appointment {appointment_id} to order {order_id}: {e}", exc_info=True)
            return result

        result.order_synced = True
        logger.info(f"Synced appointment {appointment_id} ({new_status}) -> order {order_id} ({order_status})")
        return result

    async def update_appointment_and_sync(
        self,
        appointment_id: str,
        appointment: EnrichedAppointment,
        new_status: AppointmentStatus,
        update_appointment: Callable[[], Awaitable[None]],
    ) -> SyncResult:
        """Write the appointment side first, then sync the order.

        Args:
            appointment_id: Appointment being changed
            appointment: Appointment state used to resolve the order
            new_status: Status the appointment moved to
            update_appointment: Appointment-side write; raising means it failed

        Returns:
            Both failed if the appointment write raised, otherwise the sync result
        """
        try:
            await update_appointment()
        except Exception as e:
            logger.error(f"Appointment {appointment_id} update failed, order left untouched: {e}")
            return SyncResult(
                appointment_updated=False,
                order_synced=False,
                error=str(e),
                error_kind=SyncErrorKind.APPOINTMENT_UPDATE_FAILED,
                order_id=appointment.resolved_order_id,
            )

        result = await self.sync_appointment_status(appointment_id, appointment, new_status)
        if not result.order_synced and result.error_kind is not SyncErrorKind.MONETARY_PRESERVATION:
            result.error = f"Appointment updated but order sync failed: {result.error}"
        return result

    async def _verify_amount(self, order_id: str, expected: float) -> None:
        refreshed = await self.store.get_order(order_id)
        if refreshed is None:
            logger.warning(f"Could not re-read order {order_id} to verify its total amount")
            return

        if refreshed.total_amount != expected:
            raise MonetaryPreservationError(order_id, expected, refreshed.total_amount)
