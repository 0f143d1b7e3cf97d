"""
Lifecycle manager tests: booking, assignment, status updates and tracking.
"""

import pytest

from parceltrack.app.core.exceptions import (
    DuplicateBookingError,
    ForbiddenError,
    InvalidAgentError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from parceltrack.app.domain.channels.publisher import NullPublisher
from parceltrack.app.domain.lifecycle.lifecycle_manager import LifecycleManager
from parceltrack.app.models.parcel import Address
from parceltrack.app.models.parcel_enums import ParcelStatus, PaymentType


class TestCreateParcel:

    async def test_new_parcel_is_booked_without_agent(self, lifecycle, principals):
        parcel = await lifecycle.create_parcel(
            principals.customer, Address("A"), Address("B"), "M", 2.5, "COD", 500
        )

        assert parcel.status == ParcelStatus.BOOKED
        assert parcel.agent_id is None
        assert parcel.customer_id == principals.customer.id
        assert parcel.tracking_trail == []
        assert parcel.payment_type == PaymentType.COD
        assert parcel.cod_amount == 500
        assert parcel.booking_id.startswith("BKG-")

    async def test_plain_string_addresses_are_accepted(self, lifecycle, principals):
        parcel = await lifecycle.create_parcel(principals.customer, "12 Main St", "3 Side Rd", "S", 1)

        assert parcel.pickup_address.text == "12 Main St"
        assert parcel.pickup_address.lat is None
        assert parcel.payment_type == PaymentType.PREPAID

    async def test_address_coordinates_are_kept(self, lifecycle, principals):
        parcel = await lifecycle.create_parcel(
            principals.customer, Address("A", 12.97, 77.59), Address("B", 13.0, 77.6), "L", 4
        )

        assert parcel.pickup_address.lat == 12.97
        assert parcel.delivery_address.lng == 77.6

    async def test_booking_ids_are_unique(self, lifecycle, principals):
        first = await lifecycle.create_parcel(principals.customer, "A", "B", "M", 1)
        second = await lifecycle.create_parcel(principals.customer, "A", "B", "M", 1)

        assert first.booking_id != second.booking_id
        assert first.id != second.id

    @pytest.mark.parametrize("role", ["agent", "admin"])
    async def test_only_customers_book(self, lifecycle, principals, role):
        with pytest.raises(ForbiddenError):
            await lifecycle.create_parcel(getattr(principals, role), "A", "B", "M", 1)

    @pytest.mark.parametrize("kwargs", [
        {"cod_amount": -1, "payment_type": "COD"},
        {"cod_amount": 100, "payment_type": "Prepaid"},
        {"weight": 0},
        {"weight": -3},
        {"size": " "},
        {"payment_type": "Barter"},
        {"pickup_address": ""},
        {"delivery_address": Address("B", lat=95.0, lng=10.0)},
        {"delivery_address": Address("B", lat=10.0)},
    ])
    async def test_malformed_booking_is_rejected(self, lifecycle, principals, kwargs):
        params = {
            "pickup_address": "A",
            "delivery_address": "B",
            "size": "M",
            "weight": 1.0,
            "payment_type": "COD",
            "cod_amount": 0,
        }
        params.update(kwargs)

        with pytest.raises(ValidationError):
            await lifecycle.create_parcel(principals.customer, **params)

        assert await lifecycle.list_parcels(principals.admin) == []

    async def test_duplicate_booking_id_is_rejected(self, session_factory, principals):
        manager = LifecycleManager(session_factory, NullPublisher(), id_generator=lambda: "BKG-FIXED")
        await manager.create_parcel(principals.customer, "A", "B", "M", 1)

        with pytest.raises(DuplicateBookingError) as exc_info:
            await manager.create_parcel(principals.customer, "A", "B", "M", 1)

        assert exc_info.value.status_code == 409
        assert len(await manager.list_parcels(principals.admin)) == 1


class TestAssignAgent:

    async def test_assign_moves_to_assigned(self, lifecycle, principals, booked_parcel):
        parcel = await lifecycle.assign_agent(principals.admin, booked_parcel.id, principals.agent.id)

        assert parcel.status == ParcelStatus.ASSIGNED
        assert parcel.agent_id == principals.agent.id
        assert parcel.assigned_at is not None

    @pytest.mark.parametrize("role", ["customer", "agent"])
    async def test_only_admins_assign(self, lifecycle, principals, booked_parcel, role):
        with pytest.raises(ForbiddenError):
            await lifecycle.assign_agent(getattr(principals, role), booked_parcel.id, principals.agent.id)

    @pytest.mark.parametrize("target", ["customer", "admin", "inactive_agent"])
    async def test_assignee_must_be_active_agent(self, lifecycle, principals, booked_parcel, target):
        with pytest.raises(InvalidAgentError):
            await lifecycle.assign_agent(principals.admin, booked_parcel.id, getattr(principals, target).id)

        parcel = await lifecycle.get_parcel(principals.admin, booked_parcel.id)
        assert parcel.status == ParcelStatus.BOOKED
        assert parcel.agent_id is None

    async def test_unknown_agent(self, lifecycle, principals, booked_parcel):
        with pytest.raises(NotFoundError):
            await lifecycle.assign_agent(principals.admin, booked_parcel.id, 9999)

    async def test_unknown_parcel(self, lifecycle, principals):
        with pytest.raises(NotFoundError):
            await lifecycle.assign_agent(principals.admin, 9999, principals.agent.id)

    async def test_reassignment_is_refused(self, lifecycle, principals, assigned_parcel):
        with pytest.raises(InvalidTransitionError):
            await lifecycle.assign_agent(principals.admin, assigned_parcel.id, principals.other_agent.id)

        parcel = await lifecycle.get_parcel(principals.admin, assigned_parcel.id)
        assert parcel.agent_id == principals.agent.id

    async def test_closed_parcel_cannot_be_assigned(self, lifecycle, principals, assigned_parcel):
        await lifecycle.update_status(principals.agent, assigned_parcel.id, "Failed")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await lifecycle.assign_agent(principals.admin, assigned_parcel.id, principals.other_agent.id)

        assert exc_info.value.details == {"current_status": "Failed", "requested_status": "Assigned"}


class TestUpdateStatus:

    async def test_full_delivery_path(self, lifecycle, principals, assigned_parcel):
        agent = principals.agent
        for status in ("PickedUp", "InTransit", "Delivered"):
            parcel = await lifecycle.update_status(agent, assigned_parcel.id, status)
            assert parcel.status == ParcelStatus(status)

        assert parcel.picked_at is not None
        assert parcel.in_transit_at is not None
        assert parcel.delivered_at is not None
        assert parcel.failed_at is None

    @pytest.mark.parametrize("path", [[], ["PickedUp"], ["PickedUp", "InTransit"]])
    async def test_failed_reachable_from_active_states(self, lifecycle, principals, assigned_parcel, path):
        for status in path:
            await lifecycle.update_status(principals.agent, assigned_parcel.id, status)

        parcel = await lifecycle.update_status(principals.agent, assigned_parcel.id, ParcelStatus.FAILED)

        assert parcel.status == ParcelStatus.FAILED
        assert parcel.failed_at is not None

    @pytest.mark.parametrize("status", ["InTransit", "Delivered", "Assigned", "Booked"])
    async def test_skipping_states_is_refused(self, lifecycle, principals, assigned_parcel, status):
        with pytest.raises(InvalidTransitionError):
            await lifecycle.update_status(principals.agent, assigned_parcel.id, status)

        parcel = await lifecycle.get_parcel(principals.admin, assigned_parcel.id)
        assert parcel.status == ParcelStatus.ASSIGNED

    async def test_terminal_states_are_final(self, lifecycle, principals, assigned_parcel):
        await lifecycle.update_status(principals.agent, assigned_parcel.id, "Failed")

        for status in ParcelStatus:
            with pytest.raises(InvalidTransitionError):
                await lifecycle.update_status(principals.agent, assigned_parcel.id, status)

    async def test_unknown_status_name(self, lifecycle, principals, assigned_parcel):
        with pytest.raises(ValidationError):
            await lifecycle.update_status(principals.agent, assigned_parcel.id, "Lost")

    @pytest.mark.parametrize("role", ["other_agent", "customer", "admin"])
    async def test_only_assigned_agent_updates(self, lifecycle, principals, assigned_parcel, role):
        with pytest.raises(ForbiddenError):
            await lifecycle.update_status(getattr(principals, role), assigned_parcel.id, "PickedUp")

    async def test_booked_parcel_has_no_agent_to_update_it(self, lifecycle, principals, booked_parcel):
        with pytest.raises(ForbiddenError):
            await lifecycle.update_status(principals.agent, booked_parcel.id, "PickedUp")

    async def test_unknown_parcel(self, lifecycle, principals):
        with pytest.raises(NotFoundError):
            await lifecycle.update_status(principals.agent, 9999, "PickedUp")


class TestAppendLocation:

    async def test_trail_grows_in_order(self, lifecycle, principals, assigned_parcel):
        await lifecycle.append_location(principals.agent, assigned_parcel.id, 12.9, 77.6)
        await lifecycle.update_status(principals.agent, assigned_parcel.id, "PickedUp")
        await lifecycle.append_location(principals.agent, assigned_parcel.id, 13.0, 77.7)

        parcel = await lifecycle.get_parcel(principals.customer, assigned_parcel.id)

        assert [(p.seq, p.lat, p.lng) for p in parcel.tracking_trail] == [
            (1, 12.9, 77.6),
            (2, 13.0, 77.7),
        ]
        assert parcel.status == ParcelStatus.PICKED_UP

    async def test_booked_parcel_cannot_be_tracked(self, lifecycle, principals, booked_parcel):
        # Nobody is assigned yet, so the caller cannot be the assigned agent
        with pytest.raises(ForbiddenError):
            await lifecycle.append_location(principals.agent, booked_parcel.id, 1, 1)

    @pytest.mark.parametrize("terminal", ["Delivered", "Failed"])
    async def test_terminal_parcel_cannot_be_tracked(self, lifecycle, principals, assigned_parcel, terminal):
        if terminal == "Delivered":
            for status in ("PickedUp", "InTransit", "Delivered"):
                await lifecycle.update_status(principals.agent, assigned_parcel.id, status)
        else:
            await lifecycle.update_status(principals.agent, assigned_parcel.id, terminal)

        with pytest.raises(InvalidStateError):
            await lifecycle.append_location(principals.agent, assigned_parcel.id, 1, 1)

        parcel = await lifecycle.get_parcel(principals.admin, assigned_parcel.id)
        assert parcel.tracking_trail == []

    @pytest.mark.parametrize("lat,lng", [(91, 0), (-91, 0), (0, 181), (0, -181), (None, 1)])
    async def test_coordinates_are_validated(self, lifecycle, principals, assigned_parcel, lat, lng):
        with pytest.raises(ValidationError):
            await lifecycle.append_location(principals.agent, assigned_parcel.id, lat, lng)

    async def test_other_agent_cannot_track(self, lifecycle, principals, assigned_parcel):
        with pytest.raises(ForbiddenError):
            await lifecycle.append_location(principals.other_agent, assigned_parcel.id, 1, 1)


class TestQueries:

    async def test_scenario_cod_parcel_to_delivery(self, lifecycle, principals):
        customer, agent, admin = principals.customer, principals.agent, principals.admin

        parcel = await lifecycle.create_parcel(customer, Address("A"), Address("B"), "M", 2.5, "COD", 500)
        await lifecycle.assign_agent(admin, parcel.id, agent.id)
        await lifecycle.update_status(agent, parcel.id, "PickedUp")
        await lifecycle.append_location(agent, parcel.id, 12.9, 77.6)
        await lifecycle.update_status(agent, parcel.id, "InTransit")
        await lifecycle.update_status(agent, parcel.id, "Delivered")

        final = await lifecycle.get_parcel(customer, parcel.id)
        assert final.status == ParcelStatus.DELIVERED
        assert final.agent_id == agent.id
        assert len(final.tracking_trail) == 1

        with pytest.raises(InvalidStateError):
            await lifecycle.append_location(agent, parcel.id, 13.0, 77.7)
        assert len((await lifecycle.get_parcel(admin, parcel.id)).tracking_trail) == 1

        with pytest.raises(ForbiddenError):
            await lifecycle.get_parcel(principals.other_customer, parcel.id)
        with pytest.raises(ForbiddenError):
            await lifecycle.get_parcel(principals.other_agent, parcel.id)

    async def test_lookup_by_booking_id(self, lifecycle, principals, booked_parcel):
        parcel = await lifecycle.get_parcel_by_booking(principals.customer, booked_parcel.booking_id)

        assert parcel.id == booked_parcel.id

        with pytest.raises(NotFoundError):
            await lifecycle.get_parcel_by_booking(principals.customer, "BKG-MISSING")
        with pytest.raises(ForbiddenError):
            await lifecycle.get_parcel_by_booking(principals.other_customer, booked_parcel.booking_id)

    async def test_list_is_scoped_to_the_caller(self, lifecycle, principals, assigned_parcel):
        other = await lifecycle.create_parcel(principals.other_customer, "C", "D", "S", 1)

        assert [p.id for p in await lifecycle.list_parcels(principals.customer)] == [assigned_parcel.id]
        assert [p.id for p in await lifecycle.list_parcels(principals.other_customer)] == [other.id]
        assert [p.id for p in await lifecycle.list_parcels(principals.agent)] == [assigned_parcel.id]
        assert await lifecycle.list_parcels(principals.other_agent) == []
        assert {p.id for p in await lifecycle.list_parcels(principals.admin)} == {assigned_parcel.id, other.id}

    async def test_list_status_filter(self, lifecycle, principals, assigned_parcel):
        booked = await lifecycle.create_parcel(principals.customer, "C", "D", "S", 1)

        listed = await lifecycle.list_parcels(principals.admin, status="Booked")

        assert [p.id for p in listed] == [booked.id]

        with pytest.raises(ValidationError):
            await lifecycle.list_parcels(principals.admin, status="Lost")

    async def test_status_report_covers_every_status(self, lifecycle, principals, assigned_parcel):
        await lifecycle.create_parcel(principals.customer, "C", "D", "S", 1)
        await lifecycle.create_parcel(principals.other_customer, "E", "F", "S", 1)

        report = await lifecycle.status_report()

        assert set(report) == set(ParcelStatus)
        assert report[ParcelStatus.BOOKED] == 2
        assert report[ParcelStatus.ASSIGNED] == 1
        assert report[ParcelStatus.DELIVERED] == 0

    async def test_agent_id_set_exactly_after_booked(self, lifecycle, principals, assigned_parcel):
        booked = await lifecycle.create_parcel(principals.customer, "C", "D", "S", 1)
        await lifecycle.update_status(principals.agent, assigned_parcel.id, "PickedUp")

        for parcel in await lifecycle.list_parcels(principals.admin):
            assert (parcel.agent_id is None) == (parcel.status == ParcelStatus.BOOKED)
        assert booked.agent_id is None
