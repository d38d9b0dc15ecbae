from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Set, Tuple

import numpy as np

from freeway_sim.config import ConfigurationError, SimulationParams
from freeway_sim.io.logging_utils import logger
from freeway_sim.metrics.traffic_stats import TrafficSample, sample_snapshot
from freeway_sim.metrics.types import SimulationMetricsRaw

from .events import EventLog, EventType, VehicleEvent
from .factory import VehicleFactory
from .kinematics import (
    KinematicsKernel,
    advance_in_lane,
    compute_movements,
    hard_stop_states,
)
from .lane_change import LaneChangeEngine
from .lifecycle import TripLifecycleManager
from .road_network import LaneIndex, Roadway
from .traffic_rules import TrafficRule
from .vehicles import MotionState, Vehicle


MAX_PLACEMENT_ATTEMPTS = 100


@dataclass
class Initialization:
    vehicles: List[Vehicle]
    lane_length: float           # [km]
    density: float               # [veh/km]


@dataclass
class StepResult:
    vehicles: List[Vehicle]
    events: EventLog


# ------------------------ PUBLIC API ------------------------


def initialize(params: SimulationParams, rng: Optional[np.random.Generator] = None) -> Initialization:
    """
    Build the starting population:
    - validate the configuration (raises ConfigurationError)
    - sample density * length vehicles, each in a uniformly random lane
    - scatter them randomly without overlaps inside their lane
      (raises ConfigurationError when a lane cannot hold its vehicles)
    - number them by position
    """
    try:
        params.validate()
    except ConfigurationError as exc:
        logger.error(f"Invalid simulation parameters: {exc}")
        raise

    rng = rng if rng is not None else np.random.default_rng()
    factory = VehicleFactory(params, rng)
    lane_length = params.freeway_length

    drafts: List[Vehicle] = []
    for i in range(params.num_vehicles):
        lane = factory.random_lane()
        drafts.append(factory.create(i, lane=lane, position=0.0))

    placed = _scatter(drafts, lane_length, params, rng)
    placed.sort(key=lambda v: (v.position, v.lane))
    vehicles = [
        replace(v, id=i, name=f"{v.vehicle_class.value.label} {i + 1}")
        for i, v in enumerate(placed)
    ]

    density = len(vehicles) / lane_length
    logger.debug(
        f"Initialized {len(vehicles)} vehicles on {params.num_lanes} lane(s), "
        f"{lane_length:.2f} km, density {density:.1f} veh/km"
    )
    return Initialization(vehicles=vehicles, lane_length=lane_length, density=density)


def step(
    vehicles: List[Vehicle],
    lane_length: float,
    params: SimulationParams,
    elapsed_time: float,
    traffic_rule: Optional[TrafficRule | str] = None,
    speed_multiplier: float = 1.0,
    stopped: Iterable[int] = (),
    rng: Optional[np.random.Generator] = None,
    kernel: Optional[KinematicsKernel] = None,
) -> StepResult:
    """
    Advance the population by one tick of params.time_step * speed_multiplier.

    1) compute phase: kinematics for every vehicle from the snapshot
    2) lane-change decisions from the same snapshot
    3) changed vehicles redo their kinematics in the new lane;
       still-blocked vehicles hard stop
    4) commit every vehicle at once (clamped into valid ranges)
    5) trip lifecycle: exits and same-tick replacements

    Vehicles listed in `stopped` are held in place with zero speed.
    The input list and its vehicles are never modified.
    """
    rule = TrafficRule(traffic_rule or params.traffic_rule)
    rng = rng if rng is not None else np.random.default_rng()
    roadway = Roadway(length=lane_length, num_lanes=params.num_lanes)
    events = EventLog()
    held = frozenset(stopped)
    dt = params.time_step * speed_multiplier

    if dt <= 0.0 or not vehicles:
        return StepResult([_clamp(v, roadway, params) for v in vehicles], events)

    index = LaneIndex.build(vehicles, roadway)
    batch = compute_movements(vehicles, index, params, dt, held, kernel)

    engine = LaneChangeEngine(params, rule, rng, roadway, dt)
    decisions = engine.decide(vehicles, index, elapsed_time, held)

    lanes = [v.lane for v in vehicles]
    for i, v in enumerate(vehicles):
        decision = decisions.get(v.id)
        if decision is not None:
            index.move(v, decision.to_lane)
            lanes[i] = decision.to_lane

    # changers and the vehicles they cut in front of get a new leader
    redo: Set[int] = set(decisions)
    for vid in decisions:
        follower = index.follower_of(index.get(vid))
        if follower is not None and follower.id not in held:
            redo.add(follower.id)

    for i, v in enumerate(vehicles):
        if v.id in redo:
            current = index.get(v.id)
            speed, move, state, blocked = advance_in_lane(current, index.leader_of(current), roadway, params, dt)
            batch.speeds[i] = speed
            batch.moves[i] = move
            batch.states[i] = state
            batch.blocked[i] = blocked

    hard_stop_states(batch, [i for i in range(len(vehicles)) if batch.blocked[i]])

    # ---------- commit ----------
    committed: List[Vehicle] = []
    for i, v in enumerate(vehicles):
        move = float(batch.moves[i])
        changed = v.id in decisions
        new_v = _clamp(
            replace(
                v,
                position=v.position + move,
                speed=float(batch.speeds[i]),
                lane=lanes[i],
                distance_traveled=v.distance_traveled + move,
                motion_state=MotionState(int(batch.states[i])),
                last_lane_change_time=elapsed_time if changed else v.last_lane_change_time,
            ),
            roadway,
            params,
        )
        committed.append(new_v)
        if changed:
            events.emit(EventType.LANE_CHANGE, new_v)

    factory = VehicleFactory(params, rng)
    lifecycle = TripLifecycleManager.for_population(factory, roadway, vehicles)
    survivors = lifecycle.process(committed, events)

    return StepResult(vehicles=survivors, events=events)


# ------------------------ STATEFUL WRAPPER ------------------------


class WorldState:
    """
    Owns one run:
    - the committed vehicle snapshot and the simulation clock
    - the injected random generator
    - vehicles held stopped by an operator
    - raw metrics (event counts and periodic samples)
    """

    def __init__(
        self,
        params: SimulationParams,
        random_seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
        kernel: Optional[KinematicsKernel] = None,
    ) -> None:
        self.params = params
        self.rng = rng if rng is not None else np.random.default_rng(random_seed)
        self.kernel = kernel

        init = initialize(params, self.rng)
        self.vehicles: List[Vehicle] = init.vehicles
        self.lane_length = init.lane_length
        self.density = init.density

        self.traffic_rule = TrafficRule(params.traffic_rule)
        self.speed_multiplier = 1.0
        self.time: float = 0.0
        self.stopped: Set[int] = set()

        self.metrics_raw = SimulationMetricsRaw()

    def step(self) -> List[VehicleEvent]:
        result = step(
            self.vehicles,
            self.lane_length,
            self.params,
            self.time,
            traffic_rule=self.traffic_rule,
            speed_multiplier=self.speed_multiplier,
            stopped=self.stopped,
            rng=self.rng,
            kernel=self.kernel,
        )
        self.vehicles = result.vehicles
        self.time += self.params.time_step * self.speed_multiplier

        events = result.events.drain()
        self.metrics_raw.record_events(events)
        return events

    def sample(self) -> TrafficSample:
        s = sample_snapshot(self.vehicles, self.lane_length, self.params.num_lanes, self.time)
        self.metrics_raw.record_sample(s)
        return s

    def stop_vehicle(self, vehicle_id: int) -> None:
        self.stopped.add(vehicle_id)

    def release_vehicle(self, vehicle_id: int) -> None:
        self.stopped.discard(vehicle_id)

    def snapshot(self) -> Tuple[Vehicle, ...]:
        """Read-only view for renderers and samplers."""
        return tuple(self.vehicles)


# ------------------------ INTERNAL LOGIC ------------------------


def _clamp(v: Vehicle, roadway: Roadway, params: SimulationParams) -> Vehicle:
    """Force position, speed, lane and distance into their valid ranges."""
    speed = v.speed if math.isfinite(v.speed) else 0.0
    speed = min(max(speed, 0.0), params.speed_limit)
    position = roadway.wrap(v.position) if math.isfinite(v.position) else 0.0
    lane = roadway.clamp_lane(v.lane)
    distance = v.distance_traveled if math.isfinite(v.distance_traveled) else 0.0

    if (speed, position, lane, distance) == (v.speed, v.position, v.lane, v.distance_traveled):
        return v
    return replace(v, speed=speed, position=position, lane=lane, distance_traveled=distance)


def _scatter(
    drafts: List[Vehicle],
    lane_length: float,
    params: SimulationParams,
    rng: np.random.Generator,
) -> List[Vehicle]:
    """
    Random, collision-free placement within each lane. A vehicle that finds
    no free spot after MAX_PLACEMENT_ATTEMPTS goes to the middle of the
    largest free stretch of its lane if that stretch leaves room on both
    sides; otherwise the whole lane is respaced evenly.
    """
    by_lane: List[List[Vehicle]] = [[] for _ in range(params.num_lanes)]
    for v in drafts:
        by_lane[v.lane].append(v)

    placed: List[Vehicle] = []
    for lane, lane_drafts in enumerate(by_lane):
        _check_capacity(lane, lane_drafts, lane_length, params)
        placed.extend(_scatter_lane(lane_drafts, lane_length, params, rng))
    return placed


def _check_capacity(lane: int, vehicles: List[Vehicle], lane_length: float, params: SimulationParams) -> None:
    needed = sum(v.length + params.min_standstill_gap for v in vehicles) / 1000.0
    if needed > lane_length:
        raise ConfigurationError(
            f"{len(vehicles)} vehicles in lane {lane} need {needed:.2f} km but the lane "
            f"is only {lane_length:.2f} km long; lower traffic_density"
        )


def _scatter_lane(
    drafts: List[Vehicle],
    lane_length: float,
    params: SimulationParams,
    rng: np.random.Generator,
) -> List[Vehicle]:
    roadway = Roadway(length=lane_length, num_lanes=params.num_lanes)
    used: List[Tuple[float, float]] = []    # (position, length)
    placed: List[Vehicle] = []

    for v in drafts:
        position: Optional[float] = None

        for _ in range(MAX_PLACEMENT_ATTEMPTS):
            x = float(rng.random() * lane_length)
            if all(_is_clear(x, v.length, p, length, lane_length, params) for p, length in used):
                position = x
                break

        if position is None:
            longest = max([v.length] + [length for _, length in used])
            spacing = (longest + params.initial_gap / 2.0) / 1000.0
            start, gap = _largest_gap([p for p, _ in used], lane_length)
            if gap < 2.0 * spacing:
                logger.debug(f"Lane {v.lane} too crowded for random placement, respacing {len(drafts)} vehicles")
                return _respace_lane(drafts, lane_length, params, rng)
            position = start + gap / 2.0

        position = roadway.wrap(position)
        used.append((position, v.length))
        placed.append(replace(v, position=position))

    return placed


def _respace_lane(
    drafts: List[Vehicle],
    lane_length: float,
    params: SimulationParams,
    rng: np.random.Generator,
) -> List[Vehicle]:
    """
    Even spacing from a random offset: every vehicle keeps its leader's body
    length plus the standstill gap, and the spare room is shared equally.
    """
    roadway = Roadway(length=lane_length, num_lanes=params.num_lanes)
    needed = sum(v.length + params.min_standstill_gap for v in drafts) / 1000.0
    spare = (lane_length - needed) / len(drafts)

    position = float(rng.random() * lane_length)
    placed: List[Vehicle] = []
    for i, v in enumerate(drafts):
        if i > 0:
            # the previous vehicle is this one's follower
            position += (v.length + params.min_standstill_gap) / 1000.0 + spare
        placed.append(replace(v, position=roadway.wrap(position)))
    return placed


def _is_clear(
    x: float,
    length: float,
    other: float,
    other_length: float,
    lane_length: float,
    params: SimulationParams,
) -> bool:
    d = abs(x - other)
    d = min(d, lane_length - d)
    spacing = (max(length, other_length) + params.initial_gap / 2.0) / 1000.0
    return d >= spacing


def _largest_gap(positions: List[float], lane_length: float) -> Tuple[float, float]:
    """Start and size of the longest empty stretch in a lane."""
    if not positions:
        return 0.0, lane_length
    ordered = sorted(positions)
    best_start, best_gap = ordered[-1], ordered[0] + lane_length - ordered[-1]
    for a, b in zip(ordered, ordered[1:]):
        if b - a > best_gap:
            best_start, best_gap = a, b - a
    return best_start, best_gap
