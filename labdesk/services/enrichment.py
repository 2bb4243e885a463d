"""Appointment enrichment: joins a raw appointment with its related records."""

import asyncio
from dataclasses import dataclass, field

from labdesk.clients.lab_api import LabStore
from labdesk.models.appointment import DoctorInfo, EnrichedAppointment, RawAppointment
from labdesk.models.entities import (
    ApiDoctor,
    ApiDoctorTimeSlot,
    ApiOrderParticipant,
    ApiService,
    ApiUser,
    OrderAggregate,
)
from labdesk.models.status import LegalFlag, LocationType
from labdesk.services import status_machine
from labdesk.services.cache import EntityCache
from labdesk.utils.logging import get_logger
from labdesk.utils.retry import OperationTimeoutError, with_timeout

logger = get_logger(__name__)

NOT_AVAILABLE = "N/A"
UNAVAILABLE_CUSTOMER_NAME = "Unavailable"

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass
class EnrichmentConfig:
    """Time budgets for enriching one appointment, in seconds."""

    total_timeout: float = 8.0
    doctor_step_timeout: float = 3.0
    order_timeout: float = 5.0


@dataclass
class OrderBundle:
    """Order-side data for one appointment."""

    order: OrderAggregate | None = None
    service: ApiService | None = None
    participants: list[ApiOrderParticipant] = field(default_factory=list)


def format_time_slot(slot: ApiDoctorTimeSlot) -> str:
    return f"{slot.start_time}-{slot.end_time}"


def format_day_of_week(day: int) -> str:
    return DAY_NAMES[day] if 0 <= day < len(DAY_NAMES) else NOT_AVAILABLE


def legal_flag_for(required_legal_document: bool | None) -> LegalFlag:
    return LegalFlag.LEGAL if required_legal_document else LegalFlag.CIVIL


def customer_name_for(user: ApiUser | None) -> str:
    if user is None:
        return NOT_AVAILABLE
    return user.full_name or user.username or NOT_AVAILABLE


def map_enriched_appointment(
    raw: RawAppointment,
    user: ApiUser | None,
    doctor_info: DoctorInfo | None,
    bundle: OrderBundle,
) -> EnrichedAppointment:
    """Merge lookup results into a display-ready appointment.

    Pure: the same inputs always produce the same appointment.
    """
    service = bundle.service
    location = status_machine.location_for_collection_method(service.collection_method if service else None)
    status = status_machine.initial_status(raw.confirmed, location)

    return EnrichedAppointment(
        **raw.model_dump(),
        customer_name=customer_name_for(user),
        phone=(user.phone if user and user.phone else NOT_AVAILABLE),
        email=(user.email if user and user.email else NOT_AVAILABLE),
        service_name=(service.service_name if service and service.service_name else raw.kind_code),
        service_category=(service.service_category if service and service.service_category else raw.kind_code),
        location_type=location,
        legal_flag=legal_flag_for(service.required_legal_document if service else None),
        doctor_info=doctor_info,
        participants=bundle.participants,
        order_snapshot=bundle.order,
        status=status,
        current_step_index=status_machine.step_index(status, location),
        completed_steps=status_machine.completed_steps(status, location),
        last_status_update=raw.updated_at,
    )


def build_minimal_appointment(raw: RawAppointment) -> EnrichedAppointment:
    """Degraded appointment built from raw fields alone."""
    location = LocationType.FACILITY
    status = status_machine.initial_status(raw.confirmed, location)

    return EnrichedAppointment(
        **raw.model_dump(),
        customer_name=UNAVAILABLE_CUSTOMER_NAME,
        phone=NOT_AVAILABLE,
        email=NOT_AVAILABLE,
        service_name=raw.kind_code,
        service_category=raw.kind_code,
        location_type=location,
        legal_flag=LegalFlag.CIVIL,
        status=status,
        current_step_index=status_machine.step_index(status, location),
        completed_steps=status_machine.completed_steps(status, location),
        last_status_update=raw.updated_at,
        degraded=True,
    )


class AppointmentEnricher:
    """Builds enriched appointments from raw ones.

    The user, doctor and order lookups run concurrently and each degrades to
    empty data on its own; the whole enrichment degrades to the minimal shape
    when it overruns its time budget.
    """

    def __init__(
        self,
        store: LabStore,
        user_cache: EntityCache[str, ApiUser],
        participant_cache: EntityCache[str, list[ApiOrderParticipant]],
        config: EnrichmentConfig | None = None,
    ):
        self.store = store
        self.user_cache = user_cache
        self.participant_cache = participant_cache
        self.config = config or EnrichmentConfig()

    async def enrich(self, raw: RawAppointment) -> EnrichedAppointment:
        """Enrich one appointment, never taking longer than the total timeout."""
        try:
            return await with_timeout(
                self._enrich(raw),
                self.config.total_timeout,
                f"enrichment of appointment {raw.id}",
            )
        except OperationTimeoutError as e:
            logger.warning(f"{e}; using minimal appointment data")
            return build_minimal_appointment(raw)

    async def _enrich(self, raw: RawAppointment) -> EnrichedAppointment:
        user, doctor_info, bundle = await asyncio.gather(
            self._lookup_user(raw),
            self._lookup_doctor(raw),
            self._lookup_order_bundle(raw),
        )
        return map_enriched_appointment(raw, user, doctor_info, bundle)

    async def _lookup_user(self, raw: RawAppointment) -> ApiUser | None:
        try:
            return await self.user_cache.get(raw.owner_user_id)
        except Exception as e:
            logger.warning(f"Could not resolve user {raw.owner_user_id} for appointment {raw.id}: {e}")
            return None

    async def _lookup_doctor(self, raw: RawAppointment) -> DoctorInfo | None:
        if not raw.doctor_time_slot_id:
            return None

        try:
            slot: ApiDoctorTimeSlot | None = await with_timeout(
                self.store.get_time_slot(raw.doctor_time_slot_id),
                self.config.doctor_step_timeout,
                f"time slot {raw.doctor_time_slot_id}",
            )
            if slot is None:
                return None

            doctor: ApiDoctor | None = await with_timeout(
                self.store.get_doctor(slot.doctor_id),
                self.config.doctor_step_timeout,
                f"doctor {slot.doctor_id}",
            )
            if doctor is None:
                return None
        except Exception as e:
            logger.warning(f"Could not fetch doctor info for appointment {raw.id}: {e}")
            return None

        return DoctorInfo(
            name=doctor.doctor_name,
            time_slot=format_time_slot(slot),
            day_of_week=format_day_of_week(slot.day_of_week),
        )

    async def _lookup_order_bundle(self, raw: RawAppointment) -> OrderBundle:
        if not raw.order_id:
            return OrderBundle()

        try:
            order = await with_timeout(
                self.store.get_order(raw.order_id),
                self.config.order_timeout,
                f"order {raw.order_id}",
            )
        except Exception as e:
            logger.warning(f"Could not fetch order {raw.order_id} for appointment {raw.id}: {e}")
            return OrderBundle()

        if order is None:
            return OrderBundle()

        service, participants = await asyncio.gather(
            self._lookup_service(order.order_id),
            self._lookup_participants(order.order_id),
        )
        return OrderBundle(order=order, service=service, participants=participants)

    async def _lookup_service(self, order_id: str) -> ApiService | None:
        try:
            details = await with_timeout(
                self.store.get_order_details(order_id),
                self.config.order_timeout,
                f"order details {order_id}",
            )
            if not details:
                return None

            return await with_timeout(
                self.store.get_service(details[0].dna_service_id),
                self.config.order_timeout,
                f"service {details[0].dna_service_id}",
            )
        except Exception as e:
            logger.warning(f"Could not fetch service for order {order_id}: {e}")
            return None

    async def _lookup_participants(self, order_id: str) -> list[ApiOrderParticipant]:
        try:
            return await self.participant_cache.get(order_id)
        except Exception as e:
            logger.warning(f"Could not fetch participants for order {order_id}: {e}")
            return []
