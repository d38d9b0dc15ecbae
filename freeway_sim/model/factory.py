from __future__ import annotations

import math
from typing import List

import numpy as np

from freeway_sim.config import SimulationParams

from .vehicles import DriverType, MotionState, TruncatedNormal, Vehicle, VehicleClass


def truncated_normal(rng: np.random.Generator, dist: TruncatedNormal) -> float:
    """Normal draw clamped into [low, high]."""
    return float(np.clip(rng.normal(dist.mean, dist.std), dist.low, dist.high))


def log_normal_with_mean(rng: np.random.Generator, mean: float, sigma: float) -> float:
    """Log-normal draw whose expected value is `mean`."""
    mu = math.log(mean) - 0.5 * sigma ** 2
    return float(rng.lognormal(mu, sigma))


class VehicleFactory:
    """
    Samples new vehicles: class from the configured mix, driver profile from
    the fixed 20/60/20 split, desired speed and trip length.
    """

    def __init__(self, params: SimulationParams, rng: np.random.Generator) -> None:
        self.params = params
        self.rng = rng

        self._classes: List[VehicleClass] = list(VehicleClass)
        mix = params.vehicle_mix
        weights = np.array([mix[c.key] for c in self._classes], dtype=np.float64)
        self._class_probs = weights / weights.sum()

        self._drivers: List[DriverType] = list(DriverType)
        self._driver_cum = np.cumsum([d.value.share for d in self._drivers])

    def sample_class(self) -> VehicleClass:
        idx = int(self.rng.choice(len(self._classes), p=self._class_probs))
        return self._classes[idx]

    def sample_driver(self) -> DriverType:
        r = self.rng.random()
        for driver, edge in zip(self._drivers, self._driver_cum):
            if r < edge:
                return driver
        return self._drivers[-1]

    def sample_desired_speed(self, vehicle_class: VehicleClass) -> float:
        p = self.params
        base = self.rng.normal(p.mean_speed, p.std_speed)
        speed = base * vehicle_class.value.speed_factor
        return float(np.clip(speed, p.min_speed, p.max_speed))

    def sample_trip_distance(self) -> float:
        p = self.params
        return log_normal_with_mean(self.rng, p.mean_trip_distance, p.sigma_trip_distance)

    def create(self, vehicle_id: int, lane: int, position: float) -> Vehicle:
        vehicle_class = self.sample_class()
        driver = self.sample_driver()
        profile = driver.value
        desired = self.sample_desired_speed(vehicle_class)

        return Vehicle(
            id=vehicle_id,
            name=f"{vehicle_class.value.label} {vehicle_id + 1}",
            position=position,
            speed=min(desired, self.params.speed_limit),
            desired_speed=desired,
            lane=lane,
            vehicle_class=vehicle_class,
            driver_type=driver,
            lane_change_probability=truncated_normal(self.rng, profile.lane_change_probability),
            lane_stickiness=truncated_normal(self.rng, profile.lane_stickiness),
            planned_trip_distance=self.sample_trip_distance(),
            motion_state=MotionState.MOVING,
        )

    def random_lane(self) -> int:
        return int(self.rng.integers(self.params.num_lanes))
