"""Appointment status vocabulary and location-dependent workflow states."""

from dataclasses import dataclass
from enum import StrEnum


class AppointmentStatus(StrEnum):
    """Flat status projection used on the wire and for display."""

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    DELIVERING_KIT = "DeliveringKit"
    KIT_DELIVERED = "KitDelivered"
    SAMPLE_RECEIVED = "SampleReceived"
    TESTING = "Testing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class LocationType(StrEnum):
    """Where the sample is collected."""

    HOME = "Home"
    FACILITY = "Facility"


class LegalFlag(StrEnum):
    """Whether the test result must stand up as a legal document."""

    LEGAL = "Legal"
    CIVIL = "Civil"


class HomeFlowStep(StrEnum):
    """Steps of a home-collection appointment, in order."""

    PENDING = AppointmentStatus.PENDING.value
    DELIVERING_KIT = AppointmentStatus.DELIVERING_KIT.value
    KIT_DELIVERED = AppointmentStatus.KIT_DELIVERED.value
    SAMPLE_RECEIVED = AppointmentStatus.SAMPLE_RECEIVED.value
    TESTING = AppointmentStatus.TESTING.value
    COMPLETED = AppointmentStatus.COMPLETED.value


class FacilityFlowStep(StrEnum):
    """Steps of an in-facility appointment, in order."""

    PENDING = AppointmentStatus.PENDING.value
    CONFIRMED = AppointmentStatus.CONFIRMED.value
    SAMPLE_RECEIVED = AppointmentStatus.SAMPLE_RECEIVED.value
    TESTING = AppointmentStatus.TESTING.value
    COMPLETED = AppointmentStatus.COMPLETED.value


@dataclass(frozen=True)
class HomeFlow:
    """Appointment progressing through the home-collection flow."""

    step: HomeFlowStep


@dataclass(frozen=True)
class FacilityFlow:
    """Appointment progressing through the in-facility flow."""

    step: FacilityFlowStep


@dataclass(frozen=True)
class Cancelled:
    """Appointment withdrawn before completion."""


WorkflowState = HomeFlow | FacilityFlow | Cancelled
