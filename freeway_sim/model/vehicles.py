from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntEnum


class MotionState(IntEnum):
    MOVING = 0
    STOPPED = 1


@dataclass(frozen=True)
class VehicleClassSpec:
    label: str
    length: float                # physical length [m]
    speed_factor: float          # multiplies the sampled desired speed
    accel_factor: float          # multiplies the speed adjustment sensitivity


class VehicleClass(Enum):
    CAR = VehicleClassSpec("Car", length=4.5, speed_factor=1.0, accel_factor=1.0)
    TRUCK = VehicleClassSpec("Truck", length=16.0, speed_factor=0.85, accel_factor=0.6)
    MOTORCYCLE = VehicleClassSpec("Motorcycle", length=2.2, speed_factor=1.1, accel_factor=1.3)

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def length(self) -> float:
        return self.value.length


@dataclass(frozen=True)
class TruncatedNormal:
    mean: float
    std: float
    low: float
    high: float


@dataclass(frozen=True)
class DriverProfileSpec:
    share: float
    lane_change_probability: TruncatedNormal
    lane_stickiness: TruncatedNormal


class DriverType(Enum):
    AGGRESSIVE = DriverProfileSpec(
        share=0.2,
        lane_change_probability=TruncatedNormal(0.8, 0.1, 0.6, 1.0),
        lane_stickiness=TruncatedNormal(0.3, 0.1, 0.1, 0.5),
    )
    NORMAL = DriverProfileSpec(
        share=0.6,
        lane_change_probability=TruncatedNormal(0.5, 0.15, 0.2, 0.8),
        lane_stickiness=TruncatedNormal(0.6, 0.15, 0.3, 0.9),
    )
    CONSERVATIVE = DriverProfileSpec(
        share=0.2,
        lane_change_probability=TruncatedNormal(0.2, 0.1, 0.05, 0.4),
        lane_stickiness=TruncatedNormal(0.8, 0.1, 0.6, 1.0),
    )

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Vehicle:
    id: int
    name: str
    position: float              # [km] along the loop, in [0, lane_length)
    speed: float                 # [km/h]
    desired_speed: float         # [km/h]
    lane: int                    # 0 is the rightmost lane
    vehicle_class: VehicleClass
    driver_type: DriverType
    lane_change_probability: float
    lane_stickiness: float
    planned_trip_distance: float          # [km]
    distance_traveled: float = 0.0        # [km]
    last_lane_change_time: float = -math.inf
    motion_state: MotionState = MotionState.MOVING

    @property
    def length(self) -> float:
        """Physical length [m]."""
        return self.vehicle_class.length

    @property
    def is_stopped(self) -> bool:
        return self.motion_state == MotionState.STOPPED or self.speed <= 0.0

    @property
    def remaining_distance(self) -> float:
        return self.planned_trip_distance - self.distance_traveled

    @property
    def trip_completed(self) -> bool:
        return self.distance_traveled >= self.planned_trip_distance

    def virtual_length(self, time_headway: float) -> float:
        """
        Physical length plus the speed dependent safe gap, in km.
        Derived every time it is asked for; never stored.
        """
        safe_gap_m = time_headway * self.speed / 3.6
        return (self.length + safe_gap_m) / 1000.0

    def can_change_lane(self, now: float, cooldown: float) -> bool:
        return now - self.last_lane_change_time >= cooldown
