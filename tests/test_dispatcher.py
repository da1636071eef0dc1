import threading
from decimal import Decimal

import pytest

from core.actors import Actor, ActorRole
from core.errors import (
    DriverAlreadyRegistered,
    DriverBusy,
    DriverHasActiveAssignment,
    DriverNotFound,
    GeocodeUnavailable,
    InvalidStatusTransition,
    LogisticsError,
    ParcelAlreadyAssigned,
    ParcelNotAvailable,
    ParcelNotFound,
    StatusUpdateForbidden,
    ValidationError,
)
from dispatch.dispatcher import Dispatcher
from dispatch.models import AssignmentStatus
from dispatch.notifications import BackgroundNotificationSink, NotificationSink
from drivers.models import DriverProfileUpdate, DriverStatus
from parcels.models import ParcelStatus, ServiceType
from parcels.tracking import is_tracking_id
from routing.models import Coordinate

ADMIN = Actor.new("admin_1", ActorRole.ADMIN)


def driver_actor(driver):
    return Actor.new(driver.user_id, ActorRole.DRIVER)


def advance(dispatcher, actor, parcel_id, *statuses):
    parcel = None
    for status in statuses:
        parcel = dispatcher.update_parcel_status(actor, parcel_id, status)
    return parcel


# --- creation ---

def test_create_parcel_prices_and_records_history(dispatcher, parcel_request, store):
    parcel = dispatcher.create_parcel(parcel_request())

    assert is_tracking_id(parcel.tracking_id)
    assert parcel.status == ParcelStatus.CREATED
    assert parcel.price == Decimal("1100.00")
    assert parcel.distance_km == 12.0
    assert parcel.current_location == "Harare CBD"

    history = store.list_status_history(parcel.id)
    assert len(history) == 1
    assert history[0].status == ParcelStatus.CREATED
    assert history[0].location == "Harare CBD"
    assert history[0].updated_by == "customer_1"


def test_create_parcel_validates_before_geocoding(dispatcher, parcel_request, resolver):
    with pytest.raises(ValidationError) as exc_info:
        dispatcher.create_parcel(parcel_request(recipient_name="  "))
    assert exc_info.value.field == "recipient_name"

    with pytest.raises(ValidationError):
        dispatcher.create_parcel(parcel_request(weight=Decimal("0")))
    with pytest.raises(ValidationError):
        dispatcher.create_parcel(parcel_request(service_type="overnight"))

    assert resolver.calls == []


def test_create_parcel_retries_tracking_id_collisions(store, pricing, parcel_request):
    ids = iter(["AAAAAAAAAA", "AAAAAAAAAA", "BBBBBBBBBB"])
    dispatcher = Dispatcher(store, pricing, tracking_id_generator=lambda: next(ids))

    first = dispatcher.create_parcel(parcel_request())
    second = dispatcher.create_parcel(parcel_request())

    assert first.tracking_id == "AAAAAAAAAA"
    assert second.tracking_id == "BBBBBBBBBB"


def test_create_parcel_gives_up_on_endless_collisions(store, pricing, parcel_request):
    dispatcher = Dispatcher(store, pricing, tracking_id_generator=lambda: "AAAAAAAAAA")
    dispatcher.create_parcel(parcel_request())

    with pytest.raises(LogisticsError) as exc_info:
        dispatcher.create_parcel(parcel_request())
    assert exc_info.value.kind == "tracking_id_taken"


def test_create_parcel_with_unknown_address_persists_nothing(dispatcher, parcel_request, store):
    with pytest.raises(GeocodeUnavailable):
        dispatcher.create_parcel(parcel_request(delivery_address="Atlantis"))
    assert store.list_unassigned_parcels() == []


def test_weight_precision_is_limited_to_grams(dispatcher, parcel_request, resolver):
    with pytest.raises(ValidationError) as exc_info:
        dispatcher.create_parcel(parcel_request(weight=Decimal("2.0005")))
    assert exc_info.value.field == "weight"
    assert resolver.calls == []

    assert dispatcher.create_parcel(parcel_request(weight=Decimal("2.125"))).weight == Decimal("2.125")


def test_quote_is_a_preview(dispatcher, parcel_request, store):
    quote, eta = dispatcher.quote(parcel_request(service_type=ServiceType.EXPRESS))

    assert quote.price == Decimal("1400.00")
    assert eta is not None
    assert store.list_unassigned_parcels() == []


# --- exclusive assignment ---

def test_claim_parcel(dispatcher, parcel, make_driver, store, sink):
    driver = make_driver("user_1")

    assignment = dispatcher.claim_parcel("user_1", parcel.id)

    assert assignment.driver_id == driver.id
    assert assignment.status == AssignmentStatus.PENDING
    assert store.get_driver(driver.id).status == DriverStatus.BUSY
    assert store.get_parcel(parcel.id).status == ParcelStatus.PICKED_UP
    assert [entry.status for entry in store.list_status_history(parcel.id)] == [
        ParcelStatus.CREATED, ParcelStatus.PICKED_UP,
    ]
    assert sink.assignments == [(driver.id, parcel.id)]


def test_two_drivers_race_for_one_parcel(dispatcher, parcel, make_driver, store):
    first = make_driver("user_1")
    second = make_driver("user_2")
    barrier = threading.Barrier(2)
    outcomes = {}

    def claim(driver):
        barrier.wait()
        try:
            dispatcher.claim_parcel(driver.user_id, parcel.id)
            outcomes[driver.id] = "won"
        except (ParcelAlreadyAssigned, ParcelNotAvailable) as exc:
            outcomes[driver.id] = exc.kind

    threads = [threading.Thread(target=claim, args=(driver,)) for driver in (first, second)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes.values()).count("won") == 1
    winner = next(driver_id for driver_id, outcome in outcomes.items() if outcome == "won")
    loser = first.id if winner == second.id else second.id

    assert store.get_assignment_for_parcel(parcel.id).driver_id == winner
    assert store.get_driver(winner).status == DriverStatus.BUSY
    assert store.get_driver(loser).status == DriverStatus.AVAILABLE
    assert store.get_parcel(parcel.id).status == ParcelStatus.PICKED_UP
    assert len(store.list_status_history(parcel.id)) == 2


def test_many_concurrent_claims_have_exactly_one_winner(dispatcher, parcel, make_driver, store):
    drivers = [make_driver(f"user_{i}") for i in range(12)]
    barrier = threading.Barrier(len(drivers))
    winners = []
    losers = []
    lock = threading.Lock()

    def claim(driver):
        barrier.wait()
        try:
            dispatcher.claim_parcel(driver.user_id, parcel.id)
            with lock:
                winners.append(driver.id)
        except (ParcelAlreadyAssigned, ParcelNotAvailable):
            with lock:
                losers.append(driver.id)

    threads = [threading.Thread(target=claim, args=(driver,)) for driver in drivers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == len(drivers) - 1
    assert len(store.list_drivers(DriverStatus.BUSY)) == 1


def test_one_driver_racing_for_two_parcels_gets_one(dispatcher, parcel_request, make_driver, store):
    driver = make_driver("user_1")
    parcels = [dispatcher.create_parcel(parcel_request()) for _ in range(2)]
    barrier = threading.Barrier(2)
    results = []

    def claim(parcel):
        barrier.wait()
        try:
            dispatcher.claim_parcel("user_1", parcel.id)
            results.append("won")
        except DriverBusy:
            results.append("busy")

    threads = [threading.Thread(target=claim, args=(parcel,)) for parcel in parcels]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == ["busy", "won"]
    assert len(store.list_assignments_for_driver(driver.id)) == 1
    assert len(store.list_unassigned_parcels()) == 1


def test_busy_driver_cannot_claim_again(dispatcher, parcel_request, make_driver, store):
    make_driver("user_1")
    first = dispatcher.create_parcel(parcel_request())
    second = dispatcher.create_parcel(parcel_request())
    dispatcher.claim_parcel("user_1", first.id)

    with pytest.raises(DriverBusy):
        dispatcher.claim_parcel("user_1", second.id)

    # the failed claim left the second parcel untouched
    assert store.get_parcel(second.id).status == ParcelStatus.CREATED
    assert store.get_assignment_for_parcel(second.id) is None
    assert len(store.list_status_history(second.id)) == 1


def test_assign_parcel_by_admin(dispatcher, parcel, make_driver, store):
    driver = make_driver("user_1", status=DriverStatus.OFFLINE)

    assignment = dispatcher.assign_parcel("admin_1", driver.id, parcel.id)

    assert assignment.assigned_by == "admin_1"
    assert store.get_driver(driver.id).status == DriverStatus.BUSY
    assert store.list_status_history(parcel.id)[-1].notes == "Parcel assigned to driver"


def test_assignment_error_order(dispatcher, parcel, make_driver):
    driver = make_driver("user_1")

    with pytest.raises(ParcelNotFound):
        dispatcher.assign_parcel("admin_1", driver.id, "missing")
    with pytest.raises(DriverNotFound):
        dispatcher.assign_parcel("admin_1", "missing", parcel.id)
    with pytest.raises(DriverNotFound):
        dispatcher.claim_parcel("not_a_driver", parcel.id)

    dispatcher.assign_parcel("admin_1", driver.id, parcel.id)
    other = make_driver("user_2")
    with pytest.raises(ParcelNotAvailable):
        dispatcher.assign_parcel("admin_1", other.id, parcel.id)


# --- status updates ---

def test_driver_delivers_and_is_released(dispatcher, parcel, make_driver, store, sink):
    driver = make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    delivered = advance(
        dispatcher, driver_actor(driver), parcel.id,
        ParcelStatus.IN_TRANSIT, ParcelStatus.OUT_FOR_DELIVERY, ParcelStatus.DELIVERED,
    )

    assert delivered.status == ParcelStatus.DELIVERED
    assert delivered.actual_delivery_date is not None
    assert store.get_assignment_for_parcel(parcel.id).status == AssignmentStatus.COMPLETED
    assert store.get_driver(driver.id).status == DriverStatus.AVAILABLE
    assert len(store.list_status_history(parcel.id)) == 5
    assert sink.status_updates[-1] == (parcel.id, ParcelStatus.DELIVERED)


@pytest.mark.parametrize("terminal", [ParcelStatus.FAILED, ParcelStatus.RETURNED])
def test_failed_or_returned_cancels_assignment(dispatcher, parcel, make_driver, store, terminal):
    driver = make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    dispatcher.update_parcel_status(ADMIN, parcel.id, terminal, notes="Recipient unreachable")

    assert store.get_assignment_for_parcel(parcel.id).status == AssignmentStatus.CANCELLED
    assert store.get_driver(driver.id).status == DriverStatus.AVAILABLE
    # the released driver can take new work
    assert dispatcher.set_driver_availability(driver.id, DriverStatus.OFFLINE).status == DriverStatus.OFFLINE


def test_no_transition_out_of_terminal_status_and_no_history(dispatcher, parcel, make_driver, store):
    make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)
    dispatcher.update_parcel_status(ADMIN, parcel.id, ParcelStatus.FAILED)
    history_before = store.list_status_history(parcel.id)

    with pytest.raises(InvalidStatusTransition):
        dispatcher.update_parcel_status(ADMIN, parcel.id, ParcelStatus.IN_TRANSIT)

    assert store.list_status_history(parcel.id) == history_before
    assert store.get_parcel(parcel.id).status == ParcelStatus.FAILED


def test_only_the_assigned_driver_or_an_admin_may_write(dispatcher, parcel, make_driver, store):
    make_driver("user_1")
    other = make_driver("user_2")
    dispatcher.claim_parcel("user_1", parcel.id)

    with pytest.raises(StatusUpdateForbidden):
        dispatcher.update_parcel_status(driver_actor(other), parcel.id, ParcelStatus.IN_TRANSIT)
    with pytest.raises(StatusUpdateForbidden):
        dispatcher.update_parcel_status(Actor.new("customer_1", "customer"), parcel.id, ParcelStatus.IN_TRANSIT)

    assert dispatcher.update_parcel_status(ADMIN, parcel.id, "in_transit").status == ParcelStatus.IN_TRANSIT


def test_skipping_a_step_is_rejected(dispatcher, parcel, make_driver):
    make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    with pytest.raises(InvalidStatusTransition):
        dispatcher.update_parcel_status(ADMIN, parcel.id, ParcelStatus.DELIVERED)
    with pytest.raises(ValidationError):
        dispatcher.update_parcel_status(ADMIN, parcel.id, "lost_in_space")


def test_admin_cannot_mark_picked_up_without_assignment(dispatcher, parcel, make_driver, store):
    driver = make_driver("user_1")

    with pytest.raises(InvalidStatusTransition):
        dispatcher.update_parcel_status(ADMIN, parcel.id, ParcelStatus.PICKED_UP)

    assert store.get_parcel(parcel.id).status == ParcelStatus.CREATED
    assert store.get_assignment_for_parcel(parcel.id) is None
    assert len(store.list_status_history(parcel.id)) == 1

    # the parcel is still open to the assignment protocol
    assignment = dispatcher.claim_parcel("user_1", parcel.id)
    assert store.get_assignment_for_parcel(parcel.id) == assignment
    assert store.get_driver(driver.id).status == DriverStatus.BUSY


def test_status_location_becomes_current_location(dispatcher, parcel, make_driver):
    make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    updated = dispatcher.update_parcel_status(ADMIN, parcel.id, ParcelStatus.IN_TRANSIT, location="Mbare depot")
    assert updated.current_location == "Mbare depot"


# --- drivers ---

def test_register_driver_once_per_user(dispatcher):
    driver = dispatcher.register_driver("user_1", license_number="LIC-1", vehicle_plate="AEF 1234")
    assert driver.status == DriverStatus.OFFLINE

    with pytest.raises(DriverAlreadyRegistered):
        dispatcher.register_driver("user_1")
    with pytest.raises(ValidationError):
        dispatcher.register_driver("user_2", status=DriverStatus.BUSY)


def test_busy_driver_cannot_toggle_availability(dispatcher, parcel, make_driver):
    driver = make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    with pytest.raises(DriverHasActiveAssignment):
        dispatcher.set_driver_availability(driver.id, DriverStatus.OFFLINE)
    with pytest.raises(ValidationError):
        dispatcher.set_driver_availability(driver.id, DriverStatus.BUSY)


def test_driver_profile_and_location(dispatcher, make_driver):
    driver = make_driver("user_1")

    updated = dispatcher.update_driver_profile(driver.id, DriverProfileUpdate(vehicle_plate="ADD 9876"))
    assert updated.vehicle_plate == "ADD 9876"
    assert updated.vehicle_type == "Bike"

    with pytest.raises(ValidationError):
        dispatcher.update_driver_profile(driver.id, DriverProfileUpdate())

    moved = dispatcher.update_driver_location(driver.id, Coordinate(-17.80, 31.04))
    assert moved.current_location == Coordinate(-17.80, 31.04)
    assert dispatcher.get_driver(driver.id).current_location == Coordinate(-17.80, 31.04)


def test_list_drivers_by_status(dispatcher, make_driver):
    make_driver("user_1")
    make_driver("user_2", status=DriverStatus.OFFLINE)

    assert [d.user_id for d in dispatcher.list_drivers("available")] == ["user_1"]
    assert len(dispatcher.list_drivers()) == 2
    with pytest.raises(ValidationError):
        dispatcher.list_drivers("sleeping")


# --- reads ---

def test_track_parcel_newest_first(dispatcher, parcel, make_driver):
    make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    tracked, history = dispatcher.track_parcel(parcel.tracking_id.lower())

    assert tracked.id == parcel.id
    assert [entry.status for entry in history] == [ParcelStatus.PICKED_UP, ParcelStatus.CREATED]

    with pytest.raises(ParcelNotFound):
        dispatcher.track_parcel("ZZZZZZZZZZ")


def test_list_parcels_is_scoped_by_role(dispatcher, parcel_request, make_driver):
    driver = make_driver("user_1")
    make_driver("user_2")
    first = dispatcher.create_parcel(parcel_request())
    second = dispatcher.create_parcel(parcel_request())
    other = dispatcher.create_parcel(parcel_request(sender_id="customer_2"))
    dispatcher.claim_parcel("user_1", first.id)

    def ids(actor):
        return [p.id for p in dispatcher.list_parcels(actor)]

    assert ids(Actor.new("customer_1", ActorRole.CUSTOMER)) == [second.id, first.id]
    assert ids(Actor.new("customer_2", ActorRole.CUSTOMER)) == [other.id]
    assert ids(driver_actor(driver)) == [first.id]
    assert ids(Actor.new("user_2", ActorRole.DRIVER)) == []
    assert ids(ADMIN) == [other.id, second.id, first.id]


def test_available_parcels_exclude_assigned(dispatcher, parcel_request, make_driver):
    make_driver("user_1")
    claimed = dispatcher.create_parcel(parcel_request())
    waiting = dispatcher.create_parcel(parcel_request())
    dispatcher.claim_parcel("user_1", claimed.id)

    assert [p.id for p in dispatcher.list_available_parcels()] == [waiting.id]


def test_driver_assignments(dispatcher, parcel, make_driver):
    driver = make_driver("user_1")
    dispatcher.claim_parcel("user_1", parcel.id)

    assert [a.parcel_id for a in dispatcher.driver_assignments(driver.id)] == [parcel.id]
    with pytest.raises(DriverNotFound):
        dispatcher.driver_assignments("missing")


# --- notifications ---

class ExplodingSink(NotificationSink):
    def notify_status_update(self, parcel, entry):
        raise RuntimeError("push gateway down")

    def notify_driver_assignment(self, driver, parcel):
        raise RuntimeError("push gateway down")


def test_failing_sink_never_breaks_dispatch(store, pricing, parcel_request):
    dispatcher = Dispatcher(store, pricing, notifier=ExplodingSink())
    dispatcher.register_driver("user_1", status=DriverStatus.AVAILABLE)
    parcel = dispatcher.create_parcel(parcel_request())

    assignment = dispatcher.claim_parcel("user_1", parcel.id)
    assert store.get_assignment_for_parcel(parcel.id) == assignment


def test_background_sink_runs_delegate_off_thread(parcel, sink):
    background = BackgroundNotificationSink(delegate=sink)

    class Entry:
        status = ParcelStatus.CREATED

    background.notify_status_update(parcel, Entry())
    background.close()

    assert sink.status_updates == [(parcel.id, ParcelStatus.CREATED)]
