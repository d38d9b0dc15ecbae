from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import List, Sequence

import numpy as np

from freeway_sim.model.vehicles import Vehicle


# pack detection defaults
PACK_GAP_THRESHOLD = 0.1       # [km] between consecutive vehicles of one pack
PACK_SPEED_THRESHOLD = 15.0    # [km/h] speed differential that splits a pack
PACK_MIN_SIZE = 2


@dataclass(frozen=True)
class Pack:
    lane: int
    size: int
    length: float                # [km] from the rear-most to the front-most vehicle
    mean_speed: float            # [km/h]


@dataclass
class TrafficSample:
    """Post-tick snapshot statistics, as plotted by the dashboards."""

    time: float
    density: float                         # [veh/km]
    average_speed: float                   # [km/h]
    throughput: float                      # [veh/h] = speed * density
    lane_percentages: List[float] = field(default_factory=list)
    lane_speeds: List[float] = field(default_factory=list)
    pack_count: int = 0
    average_pack_size: float = 0.0
    pack_density: float = 0.0              # [packs/km]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class StabilizedValue:
    value: float
    is_stabilized: bool
    confidence: float


def find_packs(
    vehicles: Sequence[Vehicle],
    lane_length: float,
    num_lanes: int,
    gap_threshold: float = PACK_GAP_THRESHOLD,
    speed_threshold: float = PACK_SPEED_THRESHOLD,
    min_size: int = PACK_MIN_SIZE,
) -> List[Pack]:
    """
    Cluster each lane into packs.

    Consecutive vehicles (circularly) belong to the same pack unless the gap
    between them exceeds `gap_threshold` or their speeds differ by more than
    `speed_threshold`. Clusters smaller than `min_size` are not packs.
    """
    packs: List[Pack] = []

    for lane in range(num_lanes):
        lane_v = sorted((v for v in vehicles if v.lane == lane), key=lambda v: v.position)
        n = len(lane_v)
        if n < max(min_size, 1):
            continue

        # breaks[i]: lane_v[i + 1] is detached from lane_v[i]
        breaks: List[bool] = []
        for i in range(n):
            rear = lane_v[i]
            front = lane_v[(i + 1) % n]
            gap = front.position - rear.position
            if i == n - 1:
                gap += lane_length
            breaks.append(gap > gap_threshold or abs(front.speed - rear.speed) > speed_threshold)

        if not any(breaks):
            clusters = [lane_v]
        else:
            # start right after a break so no cluster straddles the rotation point
            k = breaks.index(True)
            order = lane_v[k + 1:] + lane_v[:k + 1]
            clusters = [[order[0]]]
            for j in range(1, n):
                if breaks[(k + j) % n]:
                    clusters.append([order[j]])
                else:
                    clusters[-1].append(order[j])

        for cluster in clusters:
            if len(cluster) < min_size:
                continue
            length = (cluster[-1].position - cluster[0].position) % lane_length
            packs.append(Pack(
                lane=lane,
                size=len(cluster),
                length=length,
                mean_speed=float(np.mean([v.speed for v in cluster])),
            ))

    return packs


def sample_snapshot(
    vehicles: Sequence[Vehicle],
    lane_length: float,
    num_lanes: int,
    time: float = 0.0,
) -> TrafficSample:
    n = len(vehicles)
    if n == 0:
        return TrafficSample(
            time=time,
            density=0.0,
            average_speed=0.0,
            throughput=0.0,
            lane_percentages=[0.0] * num_lanes,
            lane_speeds=[0.0] * num_lanes,
        )

    speeds = np.array([v.speed for v in vehicles], dtype=np.float64)
    lanes = np.array([v.lane for v in vehicles], dtype=np.int64)
    counts = np.bincount(lanes, minlength=num_lanes)
    speed_sums = np.bincount(lanes, weights=speeds, minlength=num_lanes)
    lane_speeds = np.divide(speed_sums, counts, out=np.zeros(num_lanes), where=counts > 0)

    density = n / lane_length
    average_speed = float(speeds.mean())
    packs = find_packs(vehicles, lane_length, num_lanes)

    return TrafficSample(
        time=time,
        density=density,
        average_speed=average_speed,
        throughput=average_speed * density,
        lane_percentages=(counts / n * 100.0).tolist(),
        lane_speeds=lane_speeds.tolist(),
        pack_count=len(packs),
        average_pack_size=float(np.mean([p.size for p in packs])) if packs else 0.0,
        pack_density=len(packs) / lane_length,
    )


def stabilized_value(
    data: Sequence[float],
    window: int = 10,
    threshold: float = 0.05,
) -> StabilizedValue:
    """
    Value a noisy series settles on.

    Moving averages over `window` points; the series counts as stabilized
    when the last few averages vary by less than `threshold` (coefficient
    of variation).
    """
    values = np.asarray(data, dtype=np.float64)
    values = values[~np.isnan(values)]
    if values.size < window * 2:
        last = float(values[-1]) if values.size else 0.0
        return StabilizedValue(value=last, is_stabilized=False, confidence=0.0)

    moving = np.convolve(values, np.ones(window) / window, mode="valid")
    recent = moving[-min(5, moving.size):]
    mean = float(recent.mean())
    std = float(recent.std())

    cv = std / abs(mean) if mean != 0 else 1.0
    return StabilizedValue(
        value=mean,
        is_stabilized=cv < threshold,
        confidence=min(1.0, max(0.0, 1.0 - cv)),
    )
