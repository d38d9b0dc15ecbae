import numpy as np
import pytest

from freeway_sim.config import SimulationParams
from freeway_sim.model.events import EventLog, EventType
from freeway_sim.model.factory import VehicleFactory, log_normal_with_mean
from freeway_sim.model.lifecycle import TripLifecycleManager
from freeway_sim.model.road_network import Roadway
from freeway_sim.model.vehicles import DriverType, VehicleClass


def test_finished_vehicles_are_replaced_one_for_one(make_vehicle, rng):
    params = SimulationParams(num_lanes=3)
    vehicles = [
        make_vehicle(0, position=0.2, planned_trip_distance=5.0, distance_traveled=1.0),
        make_vehicle(1, position=0.4, planned_trip_distance=5.0, distance_traveled=5.0),
        make_vehicle(4, position=0.6, planned_trip_distance=5.0, distance_traveled=6.2),
    ]
    events = EventLog()
    manager = TripLifecycleManager.for_population(VehicleFactory(params, rng), Roadway(1.0, 3), vehicles)

    survivors = manager.process(vehicles, events)

    assert len(survivors) == len(vehicles)
    assert [e.vehicle_id for e in events.of_type(EventType.EXIT)] == [1, 4]
    entered = events.of_type(EventType.ENTER)
    assert [e.vehicle_id for e in entered] == [5, 6]
    for v in survivors[1:]:
        assert v.position == 0.0
        assert 0 <= v.lane < 3
        assert v.distance_traveled == 0.0
    # exits come before entries
    assert [e.type for e in events] == [EventType.EXIT] * 2 + [EventType.ENTER] * 2


def test_nothing_happens_without_finished_trips(make_vehicle, rng):
    vehicles = [make_vehicle(0), make_vehicle(1, position=0.5)]
    events = EventLog()
    manager = TripLifecycleManager.for_population(VehicleFactory(SimulationParams(), rng), Roadway(1.0, 3), vehicles)

    assert manager.process(vehicles, events) == vehicles
    assert len(events) == 0


def test_class_mix_is_respected(rng):
    params = SimulationParams(car_percentage=0, truck_percentage=100, motorcycle_percentage=0)
    factory = VehicleFactory(params, rng)

    assert {factory.sample_class() for _ in range(50)} == {VehicleClass.TRUCK}


def test_desired_speed_is_clamped_to_bounds(rng):
    params = SimulationParams(mean_speed=100.0, std_speed=80.0, min_speed=60.0, max_speed=120.0)
    factory = VehicleFactory(params, rng)

    for _ in range(200):
        v = factory.create(0, lane=0, position=0.0)
        assert 60.0 <= v.desired_speed <= 120.0
        assert v.speed <= params.speed_limit
        assert 0.0 <= v.lane_change_probability <= 1.0
        assert 0.0 <= v.lane_stickiness <= 1.0


def test_driver_split(rng):
    factory = VehicleFactory(SimulationParams(), rng)
    drivers = [factory.sample_driver() for _ in range(5000)]

    assert drivers.count(DriverType.AGGRESSIVE) / 5000 == pytest.approx(0.2, abs=0.03)
    assert drivers.count(DriverType.NORMAL) / 5000 == pytest.approx(0.6, abs=0.03)
    assert drivers.count(DriverType.CONSERVATIVE) / 5000 == pytest.approx(0.2, abs=0.03)


def test_trip_distance_is_log_normal_with_configured_mean():
    rng = np.random.default_rng(3)
    samples = [log_normal_with_mean(rng, 8.0, 0.5) for _ in range(5000)]

    assert min(samples) > 0.0
    assert np.mean(samples) == pytest.approx(8.0, rel=0.05)


def test_new_vehicle_naming(rng):
    factory = VehicleFactory(SimulationParams(), rng)
    v = factory.create(41, lane=1, position=0.0)

    assert v.name == f"{v.vehicle_class.value.label} 42"
    assert v.lane == 1


def test_same_tick_replacements_do_not_stack_at_the_entry(make_vehicle):
    params = SimulationParams(num_lanes=2)
    for seed in range(10):
        vehicles = [
            make_vehicle(0, position=0.3, planned_trip_distance=1.0, distance_traveled=1.0),
            make_vehicle(1, position=0.7, planned_trip_distance=1.0, distance_traveled=1.0),
        ]
        factory = VehicleFactory(params, np.random.default_rng(seed))
        manager = TripLifecycleManager.for_population(factory, Roadway(1.0, 2), vehicles)

        survivors = manager.process(vehicles, EventLog())

        assert [v.position for v in survivors] == [0.0, 0.0]
        assert sorted(v.lane for v in survivors) == [0, 1]


def test_replacement_avoids_an_occupied_entry(make_vehicle):
    params = SimulationParams(num_lanes=2)
    for seed in range(10):
        # 2 m past the entry, well inside a car length plus the standstill gap
        blocker = make_vehicle(0, position=0.002, lane=0)
        vehicles = [blocker, make_vehicle(1, position=0.5, planned_trip_distance=1.0, distance_traveled=1.0)]
        factory = VehicleFactory(params, np.random.default_rng(seed))
        manager = TripLifecycleManager.for_population(factory, Roadway(1.0, 2), vehicles)

        survivors = manager.process(vehicles, EventLog())

        assert survivors[0] == blocker
        assert survivors[1].position == 0.0
        assert survivors[1].lane == 1


def test_replacement_keeps_its_lane_when_no_lane_is_clear(make_vehicle, rng):
    params = SimulationParams(num_lanes=1)
    vehicles = [
        make_vehicle(0, position=0.001),
        make_vehicle(1, position=0.5, planned_trip_distance=1.0, distance_traveled=1.0),
    ]
    manager = TripLifecycleManager.for_population(VehicleFactory(params, rng), Roadway(1.0, 1), vehicles)

    survivors = manager.process(vehicles, EventLog())

    assert len(survivors) == 2
    assert survivors[1].lane == 0
    assert survivors[1].position == 0.0
