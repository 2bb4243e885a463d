"""Location-dependent appointment status workflows.

Home collection:  Pending -> DeliveringKit -> KitDelivered -> SampleReceived -> Testing -> Completed
In facility:      Pending -> Confirmed -> SampleReceived -> Testing -> Completed

Cancelled is reachable from any non-terminal step. Completed and Cancelled are
terminal. Everything here is pure.
"""

from labdesk.models.status import (
    AppointmentStatus,
    Cancelled,
    FacilityFlow,
    FacilityFlowStep,
    HomeFlow,
    HomeFlowStep,
    LocationType,
    WorkflowState,
)

HOME_FLOW: tuple[HomeFlowStep, ...] = tuple(HomeFlowStep)
FACILITY_FLOW: tuple[FacilityFlowStep, ...] = tuple(FacilityFlowStep)

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


def parse_status(value: str | AppointmentStatus | None) -> AppointmentStatus | None:
    """Parse a status string, returning None when it is not a known status."""
    if value is None:
        return None
    try:
        return AppointmentStatus(value)
    except ValueError:
        return None


def to_workflow_state(status: str | AppointmentStatus | None, location: LocationType) -> WorkflowState | None:
    """Place a flat status onto the flow for the given location.

    A status recorded under the other location's flow is mapped to its nearest
    equivalent: Confirmed becomes DeliveringKit at home, and the kit delivery
    steps collapse to Confirmed in a facility.
    """
    parsed = parse_status(status)
    if parsed is None:
        return None

    if parsed is AppointmentStatus.CANCELLED:
        return Cancelled()

    if location is LocationType.HOME:
        if parsed is AppointmentStatus.CONFIRMED:
            return HomeFlow(HomeFlowStep.DELIVERING_KIT)
        return HomeFlow(HomeFlowStep(parsed.value))

    if parsed in (AppointmentStatus.DELIVERING_KIT, AppointmentStatus.KIT_DELIVERED):
        return FacilityFlow(FacilityFlowStep.CONFIRMED)
    return FacilityFlow(FacilityFlowStep(parsed.value))


def status_of(state: WorkflowState) -> AppointmentStatus:
    """Flatten a workflow state back to its status."""
    if isinstance(state, Cancelled):
        return AppointmentStatus.CANCELLED
    return AppointmentStatus(state.step.value)


def normalize_status(status: str | AppointmentStatus | None, location: LocationType) -> AppointmentStatus | None:
    """Status as it should read for the given location, None if unrecognized."""
    state = to_workflow_state(status, location)
    return status_of(state) if state is not None else None


def flow_for(location: LocationType) -> tuple[AppointmentStatus, ...]:
    """Ordered statuses of the flow used at the given location."""
    steps = HOME_FLOW if location is LocationType.HOME else FACILITY_FLOW
    return tuple(AppointmentStatus(step.value) for step in steps)


def is_terminal(status: str | AppointmentStatus) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def next_state(state: WorkflowState) -> WorkflowState | None:
    """Following state in the same flow, None once terminal."""
    if isinstance(state, HomeFlow):
        position = HOME_FLOW.index(state.step)
        if position + 1 < len(HOME_FLOW):
            return HomeFlow(HOME_FLOW[position + 1])
        return None

    if isinstance(state, FacilityFlow):
        position = FACILITY_FLOW.index(state.step)
        if position + 1 < len(FACILITY_FLOW):
            return FacilityFlow(FACILITY_FLOW[position + 1])
        return None

    return None


def advance(status: str | AppointmentStatus | None, location: LocationType) -> AppointmentStatus | None:
    """Next status along the location's flow.

    Returns:
        The next status, or None at a terminal or unrecognized status
    """
    state = to_workflow_state(status, location)
    if state is None:
        return None

    following = next_state(state)
    return status_of(following) if following is not None else None


def step_index(status: str | AppointmentStatus | None, location: LocationType) -> int:
    """1-based position of the status in the location's flow.

    Cancelled and unrecognized statuses have no position and yield 0.
    """
    normalized = normalize_status(status, location)
    if normalized is None or normalized is AppointmentStatus.CANCELLED:
        return 0
    return flow_for(location).index(normalized) + 1


def completed_steps(status: str | AppointmentStatus | None, location: LocationType) -> list[str]:
    """Flow statuses reached so far, the current one included."""
    index = step_index(status, location)
    return [step.value for step in flow_for(location)[:index]]


def confirmed_status(location: LocationType) -> AppointmentStatus:
    """Status an appointment takes when staff confirm it."""
    if location is LocationType.HOME:
        return AppointmentStatus.DELIVERING_KIT
    return AppointmentStatus.CONFIRMED


def initial_status(confirmed: bool, location: LocationType) -> AppointmentStatus:
    """Status derived from the backend's confirmed flag alone."""
    if confirmed:
        return confirmed_status(location)
    return AppointmentStatus.PENDING


def location_for_collection_method(collection_method: int | None) -> LocationType:
    """Collection method 1 is home sampling; everything else happens on site."""
    return LocationType.HOME if collection_method == 1 else LocationType.FACILITY
