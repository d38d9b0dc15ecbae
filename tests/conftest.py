import numpy as np
import pytest

from freeway_sim.config import SimulationParams
from freeway_sim.model.vehicles import DriverType, MotionState, Vehicle, VehicleClass


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def params():
    return SimulationParams(
        traffic_density=10.0,
        freeway_length=1.0,
        num_lanes=3,
    )


@pytest.fixture
def make_vehicle():
    """Hand-built vehicle with long trips so nothing exits unless asked to."""

    def _make(
        vehicle_id=0,
        position=0.0,
        speed=100.0,
        lane=0,
        desired_speed=None,
        vehicle_class=VehicleClass.CAR,
        driver_type=DriverType.NORMAL,
        lane_change_probability=0.5,
        lane_stickiness=0.5,
        planned_trip_distance=1000.0,
        distance_traveled=0.0,
        motion_state=MotionState.MOVING,
        **kwargs,
    ):
        return Vehicle(
            id=vehicle_id,
            name=f"{vehicle_class.value.label} {vehicle_id + 1}",
            position=position,
            speed=speed,
            desired_speed=speed if desired_speed is None else desired_speed,
            lane=lane,
            vehicle_class=vehicle_class,
            driver_type=driver_type,
            lane_change_probability=lane_change_probability,
            lane_stickiness=lane_stickiness,
            planned_trip_distance=planned_trip_distance,
            distance_traveled=distance_traveled,
            motion_state=motion_state,
            **kwargs,
        )

    return _make
