"""Execution of post-transition effects with an in-memory retry outbox."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from labdesk.clients.lab_api import LabStore
from labdesk.models.appointment import EnrichedAppointment
from labdesk.models.entities import ApiTask, NotificationRequest
from labdesk.models.status import AppointmentStatus
from labdesk.services.order_sync import OrderSynchronizer, SyncResult
from labdesk.services.workflow import EffectKind, PostTransitionEffect, TransitionOutcome
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

TASK_COMPLETED = "COMPLETED"


class AppointmentUpdateRejectedError(Exception):
    """Raised when the backend refuses an appointment patch."""


class TaskUpdateRejectedError(Exception):
    """Raised when tasks cannot be loaded or the backend refuses a task update."""


@dataclass
class PendingEffect:
    """Failed effect waiting for a retry, with the appointment it belongs to."""

    effect: PostTransitionEffect
    appointment: EnrichedAppointment


class EffectOutbox:
    """In-memory queue of effects that failed and may be retried."""

    def __init__(self):
        self._pending: dict[str, PendingEffect] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, effect: PostTransitionEffect, appointment: EnrichedAppointment) -> None:
        self._pending[effect.effect_id] = PendingEffect(effect, appointment)

    def remove(self, effect_id: str) -> None:
        self._pending.pop(effect_id, None)

    def pending(self) -> list[PendingEffect]:
        return list(self._pending.values())

    def take(self, appointment_id: str, kind: EffectKind) -> list[PendingEffect]:
        """Remove and return the queued effects of one kind for an appointment, oldest first."""
        taken = [
            entry
            for entry in self._pending.values()
            if entry.effect.appointment_id == appointment_id and entry.effect.kind is kind
        ]
        for entry in taken:
            del self._pending[entry.effect.effect_id]
        return taken


@dataclass
class DispatchReport:
    """What happened to the effects of one dispatch or retry run."""

    sync_result: SyncResult | None = None
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class EffectDispatcher:
    """Carries out transition effects against the backend.

    The order sync runs first, then task completion and notifications. A failed
    effect is queued in the outbox; the status change that produced it stays
    in place. A newer order sync for the same appointment replaces any queued
    one, so a retry never writes an older status over a newer one.
    """

    def __init__(self, store: LabStore, order_sync: OrderSynchronizer, outbox: EffectOutbox | None = None):
        self.store = store
        self.order_sync = order_sync
        self.outbox = outbox or EffectOutbox()

    async def dispatch(self, outcome: TransitionOutcome) -> DispatchReport:
        """Run every effect of a transition in order."""
        ordered = sorted(outcome.effects, key=lambda effect: effect.kind is not EffectKind.ORDER_SYNC)
        for effect in ordered:
            if effect.kind is EffectKind.ORDER_SYNC:
                self._supersede(effect)
        return await self._run(ordered, lambda effect: outcome.appointment)

    async def retry_pending(self) -> DispatchReport:
        """Run every queued effect again; those still failing stay queued."""
        pending = {entry.effect.effect_id: entry for entry in self.outbox.pending()}
        if not pending:
            return DispatchReport()

        logger.info(f"Retrying {len(pending)} pending effects")
        effects = [entry.effect for entry in pending.values()]
        return await self._run(effects, lambda effect: pending[effect.effect_id].appointment)

    def _supersede(self, effect: PostTransitionEffect) -> None:
        """Drop queued order syncs of the appointment, keeping the latest unsent appointment patch."""
        carried_patch = None
        for stale in self.outbox.take(effect.appointment_id, EffectKind.ORDER_SYNC):
            logger.info(
                f"Order sync {stale.effect.effect_id} for appointment {effect.appointment_id} "
                f"superseded by {effect.effect_id}"
            )
            carried_patch = stale.effect.payload.get("appointment_patch", carried_patch)

        if carried_patch is not None:
            effect.payload.setdefault("appointment_patch", carried_patch)

    async def _run(
        self,
        effects: list[PostTransitionEffect],
        appointment_for: Callable[[PostTransitionEffect], EnrichedAppointment],
    ) -> DispatchReport:
        report = DispatchReport()

        for effect in effects:
            appointment = appointment_for(effect)
            effect.attempts += 1
            try:
                match effect.kind:
                    case EffectKind.ORDER_SYNC:
                        report.sync_result = await self._sync_order(effect, appointment)
                        if not report.sync_result.succeeded:
                            raise RuntimeError(report.sync_result.error or "order sync failed")
                    case EffectKind.TASK_COMPLETION:
                        await self._complete_tasks(effect)
                    case EffectKind.NOTIFICATION:
                        await self._notify(effect)
            except Exception as e:
                effect.last_error = str(e)
                self.outbox.add(effect, appointment)
                report.failed.append(effect.effect_id)
                logger.warning(
                    f"{effect.kind} effect {effect.effect_id} for appointment {effect.appointment_id} "
                    f"failed (attempt {effect.attempts}), queued for retry: {e}"
                )
                continue

            effect.last_error = None
            self.outbox.remove(effect.effect_id)
            report.delivered.append(effect.effect_id)

        return report

    async def _sync_order(self, effect: PostTransitionEffect, appointment: EnrichedAppointment) -> SyncResult:
        new_status = AppointmentStatus(effect.payload["new_status"])
        patch = effect.payload.get("appointment_patch")

        async def update_appointment() -> None:
            if patch is None:
                return
            if not await self.store.update_appointment(effect.appointment_id, patch):
                raise AppointmentUpdateRejectedError(f"Appointment {effect.appointment_id} update was rejected")

        return await self.order_sync.update_appointment_and_sync(
            effect.appointment_id, appointment, new_status, update_appointment
        )

    async def _complete_tasks(self, effect: PostTransitionEffect) -> None:
        """Mark every open task of the order completed; already completed tasks are skipped."""
        payload = effect.payload
        details = await self.store.get_order_details(payload["order_id"])

        open_tasks: list[ApiTask] = []
        for detail in details:
            tasks = await self.store.get_tasks(detail.id)
            if tasks is None:
                raise TaskUpdateRejectedError(f"Tasks of order detail {detail.id} could not be loaded")
            open_tasks.extend(task for task in tasks if task.status != TASK_COMPLETED)

        update = {
            "status": TASK_COMPLETED,
            "notes": payload["notes"],
            "completedDate": payload["completed_date"],
        }
        accepted = await asyncio.gather(*(self.store.update_task(task.id, update) for task in open_tasks))
        rejected = [task.id for task, ok in zip(open_tasks, accepted, strict=True) if not ok]
        if rejected:
            raise TaskUpdateRejectedError(f"Task updates rejected: {', '.join(rejected)}")

        logger.info(f"Marked {len(open_tasks)} tasks completed for appointment {effect.appointment_id}")

    async def _notify(self, effect: PostTransitionEffect) -> None:
        payload = effect.payload
        notification = NotificationRequest(title=payload["title"], message=payload["message"], type=payload["type"])
        if not await self.store.create_notification(payload["user_id"], notification):
            raise RuntimeError(f"Notification for user {payload['user_id']} was rejected")
