from dataclasses import dataclass, field, replace
from itertools import product
from typing import Any, Dict, Iterable, List, Sequence

import numpy as np

from freeway_sim.backends import get_backend
from freeway_sim.config import SimulationConfig
from freeway_sim.io.logging_utils import logger
from freeway_sim.metrics.timers import walltime
from freeway_sim.metrics.types import SimulationResult


@dataclass(frozen=True)
class SweepPoint:
    traffic_density: float     # [veh/km]
    num_lanes: int
    mean_speed: float          # [km/h]

    def apply(self, config: SimulationConfig) -> SimulationConfig:
        params = replace(
            config.params,
            traffic_density=self.traffic_density,
            num_lanes=self.num_lanes,
            mean_speed=self.mean_speed,
        )
        return replace(config, params=params)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "traffic_density": self.traffic_density,
            "num_lanes": self.num_lanes,
            "mean_speed": self.mean_speed,
        }


@dataclass
class ReplicationSummary:
    """Per-metric mean/std/min/max over independent replications."""

    replications: int
    stats: Dict[str, Dict[str, float]] = field(default_factory=dict)
    results: List[SimulationResult] = field(default_factory=list)

    def mean(self, metric: str) -> float:
        return self.stats[metric]["mean"]


@dataclass
class SweepRow:
    point: SweepPoint
    summary: ReplicationSummary

    def to_dict(self) -> Dict[str, Any]:
        row = self.point.to_dict()
        row["replications"] = self.summary.replications
        for metric, s in self.summary.stats.items():
            for stat, value in s.items():
                row[f"{metric}_{stat}"] = value
        return row


def run_single(config: SimulationConfig) -> SimulationResult:
    BackendCls = get_backend(config.backend)
    backend = BackendCls(config)
    return backend.run()


def run_replications(config: SimulationConfig, replications: int) -> ReplicationSummary:
    """
    Runs the same configuration `replications` times with seeds
    random_seed, random_seed + 1, ... and aggregates every flat metric.
    """
    if replications < 1:
        raise ValueError("replications must be >= 1")

    results: List[SimulationResult] = []
    for i in range(replications):
        cfg = replace(config, random_seed=config.random_seed + i)
        results.append(run_single(cfg))

    return ReplicationSummary(
        replications=replications,
        stats=aggregate_metrics(r.metrics() for r in results),
        results=results,
    )


def aggregate_metrics(metrics: Iterable[Dict[str, float]]) -> Dict[str, Dict[str, float]]:
    rows = list(metrics)
    if not rows:
        return {}

    stats: Dict[str, Dict[str, float]] = {}
    for name in rows[0]:
        values = np.array([r[name] for r in rows if name in r], dtype=np.float64)
        stats[name] = {
            "mean": float(values.mean()),
            "std": float(values.std()),
            "min": float(values.min()),
            "max": float(values.max()),
        }
    return stats


def sweep_points(
    densities: Sequence[float],
    lane_counts: Sequence[int],
    mean_speeds: Sequence[float],
) -> List[SweepPoint]:
    """Cartesian product of the three swept parameters, density varying slowest."""
    return [
        SweepPoint(traffic_density=float(d), num_lanes=int(n), mean_speed=float(s))
        for d, n, s in product(densities, lane_counts, mean_speeds)
    ]


def partition_points(points: Sequence[SweepPoint], rank: int, size: int) -> List[SweepPoint]:
    """
    Round-robin share of `points` for one MPI rank; the shares of ranks
    0..size-1 are disjoint and cover every point.
    """
    if size < 1 or not 0 <= rank < size:
        raise ValueError(f"Invalid rank {rank} for communicator of size {size}")
    return list(points[rank::size])


def run_sweep(
    base_config: SimulationConfig,
    points: Iterable[SweepPoint],
    replications: int = 1,
) -> List[SweepRow]:
    """
    Helper: applies every sweep point to the base configuration and runs
    `replications` seeds for each.
    """
    rows: List[SweepRow] = []
    for point in points:
        with walltime(f"sweep {point.to_dict()}"):
            summary = run_replications(point.apply(base_config), replications)
        logger.info(
            f"density={point.traffic_density:g} lanes={point.num_lanes} "
            f"speed={point.mean_speed:g}: "
            f"avg speed {summary.mean('average_speed'):.1f} km/h, "
            f"throughput {summary.mean('throughput'):.0f} veh/h"
        )
        rows.append(SweepRow(point=point, summary=summary))
    return rows
