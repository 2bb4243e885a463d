"""Tests for appointment to order synchronization."""

import pytest

from fakes import make_order, make_raw_appointment

from labdesk.models.status import AppointmentStatus
from labdesk.services.enrichment import build_minimal_appointment
from labdesk.services.order_sync import (
    OrderSynchronizer,
    SyncErrorKind,
    build_order_update,
    can_update_order_status,
    map_order_status,
)


def appointment_with_order(order_id="ORD_1"):
    return build_minimal_appointment(make_raw_appointment("APT_1", orderId=order_id))


@pytest.fixture
def synchronizer(store):
    return OrderSynchronizer(store)


class TestMapping:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (AppointmentStatus.PENDING, "pending"),
            (AppointmentStatus.CONFIRMED, "confirmed"),
            (AppointmentStatus.KIT_DELIVERED, "processing"),
            (AppointmentStatus.TESTING, "processing"),
            (AppointmentStatus.COMPLETED, "completed"),
            (AppointmentStatus.CANCELLED, "cancelled"),
        ],
    )
    def test_status_mapping(self, status, expected):
        assert map_order_status(status) == expected

    def test_unknown_status_has_no_mapping(self):
        assert map_order_status("Archived") is None

    def test_order_lifecycle(self):
        assert can_update_order_status("pending", "confirmed")
        assert can_update_order_status("paid", "processing")
        assert not can_update_order_status("completed", "processing")
        assert not can_update_order_status("", "processing")

    def test_update_payload_copies_every_field(self):
        """Test that only the status differs between the order and its update payload."""
        order = make_order()

        payload = build_order_update(order, "processing")

        assert payload["status"] == "processing"
        assert payload["total_amount"] == order.total_amount
        assert payload["payment_status"] == "paid"
        assert payload["transaction_id"] == "TX_1"
        assert payload["createdAt"] == order.created_at
        assert "orderId" not in payload


class TestSyncAppointmentStatus:
    """Tests for the read-merge-write order update."""

    @pytest.mark.asyncio
    async def test_preserves_total_amount(self, store, synchronizer):
        store.add_order(make_order("ORD_1", status="confirmed", total_amount=1750000.0))

        result = await synchronizer.sync_appointment_status(
            "APT_1", appointment_with_order(), AppointmentStatus.SAMPLE_RECEIVED
        )

        assert result.succeeded
        assert result.order_status == "processing"
        assert store.orders["ORD_1"].status_code == "processing"
        assert store.orders["ORD_1"].total_amount == 1750000.0
        assert store.orders["ORD_1"].notes == "Paternity test for two"

    @pytest.mark.asyncio
    async def test_no_order_is_a_noop(self, store, synchronizer):
        """Test that an appointment without an order syncs with zero store calls."""
        appointment = build_minimal_appointment(make_raw_appointment("APT_1"))

        result = await synchronizer.sync_appointment_status("APT_1", appointment, AppointmentStatus.COMPLETED)

        assert result.appointment_updated and result.order_synced
        assert sum(store.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_missing_order(self, store, synchronizer):
        result = await synchronizer.sync_appointment_status(
            "APT_1", appointment_with_order("ORD_404"), AppointmentStatus.CONFIRMED
        )

        assert not result.order_synced
        assert result.error_kind is SyncErrorKind.ORDER_NOT_FOUND
        assert store.calls["update_order"] == 0

    @pytest.mark.asyncio
    async def test_rejected_update(self, store, synchronizer):
        store.add_order(make_order("ORD_1"))
        store.order_update_result = False

        result = await synchronizer.sync_appointment_status("APT_1", appointment_with_order(), AppointmentStatus.CONFIRMED)

        assert result.appointment_updated
        assert not result.order_synced
        assert result.error_kind is SyncErrorKind.UPDATE_REJECTED

    @pytest.mark.asyncio
    async def test_transport_error_is_reported(self, store, synchronizer):
        store.add_order(make_order("ORD_1"))
        store.failures["update_order"] = ConnectionError("orders down")

        result = await synchronizer.sync_appointment_status("APT_1", appointment_with_order(), AppointmentStatus.CONFIRMED)

        assert result.error_kind is SyncErrorKind.TRANSPORT
        assert "orders down" in result.error

    @pytest.mark.asyncio
    async def test_changed_amount_is_a_monetary_violation(self, store, synchronizer):
        """Test that a backend losing the amount yields the monetary preservation error kind."""
        store.add_order(make_order("ORD_1"))
        store.reset_amount_on_update = True

        result = await synchronizer.sync_appointment_status("APT_1", appointment_with_order(), AppointmentStatus.CONFIRMED)

        assert not result.order_synced
        assert result.error_kind is SyncErrorKind.MONETARY_PRESERVATION
        assert "2500000.0" in result.error

    @pytest.mark.asyncio
    async def test_unexpected_transition_is_reported_not_blocked(self, store, synchronizer):
        store.add_order(make_order("ORD_1", status="completed"))

        result = await synchronizer.sync_appointment_status("APT_1", appointment_with_order(), AppointmentStatus.TESTING)

        assert result.order_synced
        assert result.anomalies == ["Order ORD_1 moves from completed to processing"]
        assert store.orders["ORD_1"].status_code == "processing"

    @pytest.mark.asyncio
    async def test_order_id_from_snapshot(self, store, synchronizer):
        order = store.add_order(make_order("ORD_7"))
        appointment = build_minimal_appointment(make_raw_appointment("APT_1")).model_copy(
            update={"order_snapshot": order}
        )

        result = await synchronizer.sync_appointment_status("APT_1", appointment, AppointmentStatus.CONFIRMED)

        assert result.order_id == "ORD_7"
        assert store.orders["ORD_7"].status_code == "confirmed"


class TestUpdateAppointmentAndSync:
    """Tests for the combined appointment and order write."""

    @pytest.mark.asyncio
    async def test_appointment_failure_skips_order(self, store, synchronizer):
        store.add_order(make_order("ORD_1"))

        async def failing_update():
            raise ConnectionError("appointments down")

        result = await synchronizer.update_appointment_and_sync(
            "APT_1", appointment_with_order(), AppointmentStatus.CONFIRMED, failing_update
        )

        assert not result.appointment_updated
        assert not result.order_synced
        assert store.calls["get_order"] == 0

    @pytest.mark.asyncio
    async def test_order_failure_keeps_appointment_update(self, store, synchronizer):
        updated = []

        async def update():
            updated.append(True)

        result = await synchronizer.update_appointment_and_sync(
            "APT_1", appointment_with_order("ORD_404"), AppointmentStatus.CONFIRMED, update
        )

        assert updated == [True]
        assert result.appointment_updated
        assert not result.order_synced
        assert result.error.startswith("Appointment updated but order sync failed")
