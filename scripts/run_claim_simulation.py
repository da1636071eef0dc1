import csv
import os
import random
import threading
import time
from decimal import Decimal
from typing import List

from core.errors import LogisticsError
from dispatch.dispatcher import Dispatcher
from dispatch.notifications import NotificationSink
from drivers.models import DriverStatus
from parcels.models import NewParcelRequest, ServiceType
from pricing.calculator import PricingCalculator
from pricing.models import PricingRule
from routing.models import Coordinate, DistanceResult, DistanceSource
from storage.memory import InMemoryStore

# Harare landmarks, so the simulation runs without any geocoder or OSRM.
LANDMARKS = {
    "Eastgate Mall, Harare": Coordinate(-17.8312, 31.0522),
    "Avondale Shops, Harare": Coordinate(-17.8003, 31.0369),
    "Sam Levy's Village, Borrowdale": Coordinate(-17.7605, 31.0890),
    "Westgate Shopping Centre, Harare": Coordinate(-17.7880, 30.9741),
    "Chitungwiza Town Centre": Coordinate(-18.0127, 31.0756),
}


class MockResolver:
    def resolve(self, address):
        return LANDMARKS[address]


class MockEstimator:
    def estimate(self, pickup, delivery):
        # Roughly 1.3x the straight line, like a city road network
        km = abs(pickup.latitude - delivery.latitude) * 111 + abs(pickup.longitude - delivery.longitude) * 106
        return DistanceResult(distance_km=round(km * 1.3, 1), duration_minutes=round(km * 2.5, 1),
                              source=DistanceSource.ROAD)


class MockPushService(NotificationSink):
    def __init__(self):
        self.assignments = 0

    def notify_driver_assignment(self, driver, parcel):
        self.assignments += 1  # Silently count notifications for the summary.


def build_simulation(driver_count: int):
    store = InMemoryStore()
    pricing = PricingCalculator(store, MockResolver(), MockEstimator())
    pricing.create_rule(
        PricingRule.new("Harare standard", base_price="2.00", price_per_km="0.50", price_per_kg="0.25",
                        express_surcharge="3.00", insurance_fee="1.50", min_price="5.00"),
        activate=True,
    )
    push_service = MockPushService()
    dispatcher = Dispatcher(store, pricing, notifier=push_service)

    drivers = [
        dispatcher.register_driver(f"user_{i}", vehicle_type=random.choice(["Bike", "Car", "Van"]),
                                   status=DriverStatus.AVAILABLE)
        for i in range(driver_count)
    ]
    return store, dispatcher, drivers, push_service


def create_parcels(dispatcher: Dispatcher, count: int) -> List:
    addresses = list(LANDMARKS)
    parcels = []
    for i in range(count):
        pickup, delivery = random.sample(addresses, 2)
        parcels.append(dispatcher.create_parcel(NewParcelRequest(
            sender_id=f"customer_{i % 5}",
            recipient_name=f"Recipient {i}",
            recipient_phone="+263771234567",
            pickup_address=pickup,
            delivery_address=delivery,
            weight=Decimal(random.choice(["1.5", "3", "5", "8.25"])),
            service_type=random.choice([ServiceType.STANDARD, ServiceType.EXPRESS]),
        )))
    return parcels


def run_simulation(driver_count=20, parcel_count=10):
    print("=== STARTING CONCURRENT CLAIM SIMULATION ===")

    store, dispatcher, drivers, push_service = build_simulation(driver_count)
    parcels = create_parcels(dispatcher, parcel_count)
    print(f"Loaded {len(parcels)} Parcels and {len(drivers)} Drivers.\n")

    results = []
    results_lock = threading.Lock()
    start_barrier = threading.Barrier(len(drivers))

    def driver_loop(driver):
        # Every driver taps "Claim" on random parcels at the same instant.
        start_barrier.wait()
        for parcel in random.sample(parcels, len(parcels)):
            try:
                dispatcher.claim_parcel(driver.user_id, parcel.id)
                outcome = "CLAIMED"
            except LogisticsError as exc:
                outcome = exc.kind
            with results_lock:
                results.append((parcel.tracking_id, driver.id, outcome))
            if outcome == "CLAIMED":
                return  # busy until delivery

    start_time = time.time()
    threads = [threading.Thread(target=driver_loop, args=(driver,)) for driver in drivers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    print(f"All claims resolved in {time.time() - start_time:.2f}s.\n")

    # Save next to the script
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "claim_results.csv")
    with open(output_path, "w", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["tracking_id", "driver_id", "outcome"])
        writer.writerows(results)

    print("--- Assignment Summary ---")
    double_assigned = 0
    for parcel in parcels:
        winners = [driver_id for tracking_id, driver_id, outcome in results
                   if tracking_id == parcel.tracking_id and outcome == "CLAIMED"]
        if len(winners) > 1:
            double_assigned += 1
        assignment = store.get_assignment_for_parcel(parcel.id)
        holder = assignment.driver_id if assignment else "UNASSIGNED"
        print(f"Parcel {parcel.tracking_id} -> {holder} ({len(winners)} winning claim)")

    busy = len(store.list_drivers(DriverStatus.BUSY))
    print("\n=== SIMULATION COMPLETE ===")
    print(f"Parcels assigned: {parcel_count - len(dispatcher.list_available_parcels())} / {parcel_count}")
    print(f"Busy drivers: {busy} / {driver_count}")
    print(f"Double assignments: {double_assigned}")
    print(f"Assignment notifications: {push_service.assignments}")
    print("Results written to 'claim_results.csv'.")


if __name__ == "__main__":
    run_simulation()
