"""Back office facade wiring the read and write paths together."""

from dataclasses import dataclass

from labdesk.clients.lab_api import LabApiClient, LabStore
from labdesk.models.appointment import EnrichedAppointment
from labdesk.services.batch import AppointmentBatchLoader, BatchConfig
from labdesk.services.cache import CacheConfig, build_participant_cache, build_user_cache
from labdesk.services.effects import DispatchReport, EffectDispatcher, PendingEffect
from labdesk.services.enrichment import AppointmentEnricher, EnrichmentConfig
from labdesk.services.order_sync import OrderSynchronizer
from labdesk.services.status_store import FileStatusStore, StatusStore
from labdesk.services.workflow import AppointmentWorkflow, TransitionAction, TransitionOutcome
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)


class AppointmentNotFoundError(LookupError):
    """Raised when an action targets an appointment the backend does not have."""


@dataclass
class TransitionResult:
    outcome: TransitionOutcome
    report: DispatchReport


class BackOffice:
    """Staff-facing operations over the lab backend.

    Reads go through the caches, enrichment and batch loader; writes go
    through the workflow and then the effect dispatcher.
    """

    def __init__(
        self,
        store: LabStore,
        status_store: StatusStore,
        cache_config: CacheConfig | None = None,
        enrichment_config: EnrichmentConfig | None = None,
        batch_config: BatchConfig | None = None,
        workflow: AppointmentWorkflow | None = None,
    ):
        self.store = store
        self.status_store = status_store
        self.user_cache = build_user_cache(store, cache_config)
        self.participant_cache = build_participant_cache(store, cache_config)
        self.enricher = AppointmentEnricher(store, self.user_cache, self.participant_cache, enrichment_config)
        self.loader = AppointmentBatchLoader(store, self.enricher, status_store, batch_config)
        self.workflow = workflow or AppointmentWorkflow(status_store)
        self.order_sync = OrderSynchronizer(store)
        self.dispatcher = EffectDispatcher(store, self.order_sync)

    async def list_appointments(self) -> list[EnrichedAppointment]:
        """All appointments, enriched, with stored status overrides applied.

        Raises:
            AppointmentListUnavailableError: If the backend list cannot be fetched
        """
        return await self.loader.load_all()

    async def get_appointment(self, appointment_id: str) -> EnrichedAppointment | None:
        return await self.loader.load_one(appointment_id)

    async def transition(
        self, appointment_id: str, action: TransitionAction | str, reason: str | None = None
    ) -> TransitionResult:
        """Apply a staff action and carry out its effects.

        Args:
            appointment_id: Target appointment
            action: One of confirm, cancel, advance, complete
            reason: Cancellation note, ignored by other actions

        Returns:
            The transition outcome and the report of its effects

        Raises:
            AppointmentNotFoundError: If the appointment does not exist
            InvalidTransitionError: If the action is not allowed from the current status
        """
        appointment = await self.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")

        outcome = self.workflow.apply(action, appointment, reason)
        report = await self.dispatcher.dispatch(outcome)
        if not report.ok:
            logger.warning(
                f"Appointment {appointment_id} moved to {outcome.new_status} but "
                f"{len(report.failed)} effects are queued for retry"
            )
        return TransitionResult(outcome=outcome, report=report)

    async def delete_appointment(self, appointment_id: str) -> bool:
        """Delete upstream and drop the local override; False if the backend refused."""
        if not await self.store.delete_appointment(appointment_id):
            logger.warning(f"Backend refused to delete appointment {appointment_id}")
            return False

        self.workflow.finalize(appointment_id)
        logger.info(f"Deleted appointment {appointment_id}")
        return True

    def pending_effects(self) -> list[PendingEffect]:
        return self.dispatcher.outbox.pending()

    async def retry_effects(self) -> DispatchReport:
        return await self.dispatcher.retry_pending()

    async def aclose(self) -> None:
        close = getattr(self.store, "aclose", None)
        if close is not None:
            await close()


_back_office: BackOffice | None = None


def get_back_office() -> BackOffice:
    """Get or create the back office instance backed by the HTTP client."""
    global _back_office
    if _back_office is None:
        _back_office = BackOffice(LabApiClient(), FileStatusStore())
    return _back_office


async def close_back_office() -> None:
    """Release the shared instance's HTTP connections, if one was created."""
    global _back_office
    if _back_office is not None:
        await _back_office.aclose()
        _back_office = None
