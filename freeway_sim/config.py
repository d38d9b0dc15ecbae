import math
import numbers
from dataclasses import dataclass, asdict, field, fields
from typing import Any, Dict, Literal, Optional


BackendName = Literal["sequential", "numba"]
TrafficRuleName = Literal["american", "european"]

TRAFFIC_RULES = ("american", "european")


class ConfigurationError(ValueError):
    """Raised when simulation parameters describe a degenerate run."""


@dataclass(frozen=True)
class SimulationParams:
    # time step (seconds)
    time_step: float = 0.1
    # vehicles per km of roadway (all lanes together)
    traffic_density: float = 20.0

    # vehicle mix [%]
    car_percentage: float = 80.0
    truck_percentage: float = 15.0
    motorcycle_percentage: float = 5.0

    # physics
    max_deceleration: float = 6.0      # [m/s^2]
    k: float = 0.3                     # speed adjustment sensitivity [1/s]
    time_headway: float = 1.5          # [s]
    hysteresis_buffer: float = 5.0     # [m] restart / braking buffer
    min_standstill_gap: float = 2.0    # [m] bumper to bumper
    stop_brake_factor: float = 0.5     # speed multiplier behind a stopped leader

    # desired speed distribution [km/h]
    min_speed: float = 40.0
    max_speed: float = 140.0
    mean_speed: float = 100.0
    std_speed: float = 10.0
    speed_limit: float = 130.0

    # trip length, log-normal [km]
    mean_trip_distance: float = 8.0
    sigma_trip_distance: float = 0.5

    # roadway
    num_lanes: int = 3
    freeway_length: float = 5.0        # [km]
    initial_gap: float = 10.0          # [m] spacing used for initial placement

    # lane changing
    politeness_factor: float = 0.3
    right_lane_bias: float = 0.1               # [m/s^2]
    lane_change_threshold: float = 0.2         # [m/s^2]
    lane_change_cooldown: float = 3.0          # [s]
    max_safe_deceleration: float = 4.0         # [m/s^2] imposed on the new follower
    gridlock_bonus: float = 0.5                # [m/s^2] when the current leader is stopped
    exit_zone_distance: float = 0.5            # [km] before the planned trip end
    exit_relaxed_threshold: float = 0.3        # [m/s^2] tolerated disadvantage when exiting
    exit_override_bypasses_gate: bool = True

    traffic_rule: TrafficRuleName = "american"

    @property
    def vehicle_mix(self) -> Dict[str, float]:
        return {
            "car": self.car_percentage,
            "truck": self.truck_percentage,
            "motorcycle": self.motorcycle_percentage,
        }

    @property
    def num_vehicles(self) -> int:
        return int(round(self.traffic_density * self.freeway_length))

    def validate(self) -> "SimulationParams":
        """
        Fail fast on configurations that would produce degenerate runtime state.

        :raises ConfigurationError: on the first invalid value found
        """
        lanes = self.num_lanes
        if isinstance(lanes, bool) or not isinstance(lanes, numbers.Integral) or lanes < 1:
            raise ConfigurationError(f"num_lanes must be a positive integer, got {self.num_lanes!r}")

        _require_positive("time_step", self.time_step)
        _require_positive("freeway_length", self.freeway_length)
        _require_positive("min_speed", self.min_speed)
        _require_positive("max_speed", self.max_speed)
        _require_positive("speed_limit", self.speed_limit)
        _require_positive("max_deceleration", self.max_deceleration)
        _require_positive("lane_change_threshold", self.lane_change_threshold)

        if self.min_speed > self.max_speed:
            raise ConfigurationError(
                f"min_speed ({self.min_speed}) must not exceed max_speed ({self.max_speed})"
            )
        _require_non_negative("std_speed", self.std_speed)
        _require_finite("mean_speed", self.mean_speed)

        _require_positive("mean_trip_distance", self.mean_trip_distance)
        _require_non_negative("sigma_trip_distance", self.sigma_trip_distance)

        _require_non_negative("traffic_density", self.traffic_density)
        for name in ("car_percentage", "truck_percentage", "motorcycle_percentage"):
            _require_non_negative(name, getattr(self, name))
        if sum(self.vehicle_mix.values()) <= 0:
            raise ConfigurationError("vehicle mix percentages must not all be zero")

        for name in (
            "k",
            "time_headway",
            "hysteresis_buffer",
            "min_standstill_gap",
            "initial_gap",
            "politeness_factor",
            "right_lane_bias",
            "lane_change_cooldown",
            "max_safe_deceleration",
            "gridlock_bonus",
            "exit_zone_distance",
            "exit_relaxed_threshold",
        ):
            _require_non_negative(name, getattr(self, name))

        if not 0.0 <= self.stop_brake_factor <= 1.0:
            raise ConfigurationError(
                f"stop_brake_factor must be in [0, 1], got {self.stop_brake_factor}"
            )

        if self.traffic_rule not in TRAFFIC_RULES:
            raise ConfigurationError(
                f"Unknown traffic rule '{self.traffic_rule}'. Available: {', '.join(TRAFFIC_RULES)}"
            )
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationParams":
        """Build params from a dict, ignoring keys that are not parameters."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SimulationConfig:
    # total time of simulation (seconds)
    total_time: float = 300.0
    random_seed: int = 42

    backend: BackendName = "sequential"
    # numba
    num_threads: int = 1

    # ticks between two metric samples
    sample_interval: int = 10

    output_dir: str = "results"
    # scenario desc
    label: Optional[str] = None

    params: SimulationParams = field(default_factory=SimulationParams)

    def to_dict(self) -> dict:
        return asdict(self)


def _require_finite(name: str, value: float) -> None:
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value}")


def _require_positive(name: str, value: float) -> None:
    _require_finite(name, value)
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")


def _require_non_negative(name: str, value: float) -> None:
    _require_finite(name, value)
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value}")
