"""Chunked, fault-isolated enrichment of appointment lists."""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from labdesk.clients.lab_api import LabStore
from labdesk.models.appointment import EnrichedAppointment, PersistedStatusRecord, RawAppointment
from labdesk.services import status_machine
from labdesk.services.enrichment import AppointmentEnricher, build_minimal_appointment
from labdesk.services.status_store import StatusStore
from labdesk.utils.logging import get_logger
from labdesk.utils.retry import Sleeper, with_timeout

logger = get_logger(__name__)


class AppointmentListUnavailableError(Exception):
    """Raised when the appointment list itself cannot be fetched. Safe to retry."""


@dataclass
class BatchConfig:
    """Chunking and pacing for list enrichment."""

    chunk_size: int = 5
    inter_chunk_delay: float = 0.2
    list_timeout: float = 15.0


def apply_status_override(
    appointment: EnrichedAppointment, record: PersistedStatusRecord | None
) -> EnrichedAppointment:
    """Let a persisted status record win over the computed status.

    The stored status is normalized to the appointment's location (a record
    written while the location was unknown may use the other flow), and the
    step index and completed steps are derived again from it.
    """
    if record is None:
        return appointment

    location = appointment.location_type
    status = status_machine.normalize_status(record.status, location) or record.status
    if status is not record.status:
        logger.debug(f"Stored status {record.status} for appointment {appointment.id} read as {status} at {location}")

    step = status_machine.step_index(status, location)
    if step != record.current_step:
        logger.debug(
            f"Stored step {record.current_step} for appointment {appointment.id} differs from derived step {step}"
        )

    return appointment.model_copy(
        update={
            "status": status,
            "current_step_index": step,
            "completed_steps": status_machine.completed_steps(status, location),
            "last_status_update": record.last_updated,
        }
    )


class AppointmentBatchLoader:
    """Loads and enriches appointment lists with bounded concurrency.

    Chunks are processed strictly in input order and the output keeps input
    order, whatever order items within a chunk finish in.
    """

    def __init__(
        self,
        store: LabStore,
        enricher: AppointmentEnricher,
        status_store: StatusStore,
        config: BatchConfig | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.store = store
        self.enricher = enricher
        self.status_store = status_store
        self.config = config or BatchConfig()
        self.sleep = sleep

    async def load_all(self) -> list[EnrichedAppointment]:
        """Fetch every appointment and enrich it.

        Raises:
            AppointmentListUnavailableError: If the list fetch fails or times out
        """
        logger.info("Fetching appointment list")
        try:
            raws = await with_timeout(self.store.list_appointments(), self.config.list_timeout, "appointment list")
        except Exception as e:
            logger.error(f"Could not load appointments: {e}")
            raise AppointmentListUnavailableError("Could not load appointments") from e

        if raws is None:
            raise AppointmentListUnavailableError("Backend refused the appointment list")

        logger.info(f"Fetched {len(raws)} appointments")
        return await self.enrich_all(raws)

    async def load_one(self, appointment_id: str) -> EnrichedAppointment | None:
        """Fetch and enrich a single appointment, None when the backend has no such id."""
        raw = await self.store.get_appointment(appointment_id)
        if raw is None:
            return None

        appointment = await self.enricher.enrich(raw)
        return apply_status_override(appointment, self.status_store.load(appointment_id))

    async def enrich_all(self, raws: Sequence[RawAppointment]) -> list[EnrichedAppointment]:
        """Enrich appointments chunk by chunk, one output per input, in input order."""
        chunk_size = max(1, self.config.chunk_size)
        enriched: list[EnrichedAppointment] = []
        degraded = 0

        for start in range(0, len(raws), chunk_size):
            if start:
                await self.sleep(self.config.inter_chunk_delay)

            chunk = raws[start : start + chunk_size]
            outcomes = await asyncio.gather(*(self.enricher.enrich(raw) for raw in chunk), return_exceptions=True)

            for raw, outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error(f"Error enriching appointment {raw.id}: {outcome}")
                    enriched.append(build_minimal_appointment(raw))
                    degraded += 1
                else:
                    enriched.append(outcome)

        results = [
            apply_status_override(appointment, self.status_store.load(appointment.id)) for appointment in enriched
        ]

        logger.info(f"Enriched {len(results)} appointments ({degraded} with minimal data)")
        return results
