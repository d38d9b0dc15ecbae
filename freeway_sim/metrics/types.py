from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

import numpy as np

from freeway_sim.metrics.traffic_stats import TrafficSample, stabilized_value
from freeway_sim.model.events import EventType, VehicleEvent


@dataclass
class SimulationMetricsRaw:
    samples: List[TrafficSample] = field(default_factory=list)

    exits: int = 0
    entries: int = 0
    lane_changes: int = 0

    def record_events(self, events: Iterable[VehicleEvent]) -> None:
        """Count one tick worth of engine events."""
        for e in events:
            if e.type == EventType.EXIT:
                self.exits += 1
            elif e.type == EventType.ENTER:
                self.entries += 1
            elif e.type == EventType.LANE_CHANGE:
                self.lane_changes += 1

    def record_sample(self, sample: TrafficSample) -> None:
        self.samples.append(sample)

    def compute_summary(self) -> Dict[str, Any]:
        """
        Derived statistics over the sampled history:
        - settled average speed and throughput
        - mean density
        - mean lane occupancy percentages
        - mean pack count and size
        """
        if not self.samples:
            return {
                "average_speed": 0.0,
                "throughput": 0.0,
                "density": 0.0,
                "lane_percentages": [],
                "pack_count": 0.0,
                "average_pack_size": 0.0,
                "speed_stabilized": False,
            }

        speed = stabilized_value([s.average_speed for s in self.samples])
        throughput = stabilized_value([s.throughput for s in self.samples])
        lane_pct = np.mean([s.lane_percentages for s in self.samples], axis=0)

        return {
            "average_speed": speed.value,
            "throughput": throughput.value,
            "density": float(np.mean([s.density for s in self.samples])),
            "lane_percentages": lane_pct.tolist(),
            "pack_count": float(np.mean([s.pack_count for s in self.samples])),
            "average_pack_size": float(np.mean([s.average_pack_size for s in self.samples])),
            "speed_stabilized": speed.is_stabilized,
        }


@dataclass
class SimulationResult:
    backend: str
    config: Dict[str, Any]

    # total time
    wall_time_seconds: float
    total_simulated_time: float

    # traffic statistics
    vehicles_in_world: int
    # [km/h]
    average_speed: float
    # [veh/h]
    throughput: float
    # [veh/km]
    density: float
    # [%] per lane, lane 0 is the rightmost
    lane_percentages: List[float]

    exits: int
    entries: int
    lane_changes: int

    history: List[Dict[str, Any]] = field(default_factory=list)
    extra_stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def right_lane_percentage(self) -> float:
        return self.lane_percentages[0] if self.lane_percentages else 0.0

    def metrics(self) -> Dict[str, float]:
        """Flat numeric metrics, as averaged across replications."""
        out = {
            "average_speed": self.average_speed,
            "throughput": self.throughput,
            "density": self.density,
            "right_lane_percentage": self.right_lane_percentage,
            "exits": float(self.exits),
            "lane_changes": float(self.lane_changes),
        }
        for lane, pct in enumerate(self.lane_percentages):
            out[f"lane_{lane}_percentage"] = pct
        return out
