from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Callable, List, Optional, Sequence, Tuple

import numpy as np
from numba import njit, prange

from freeway_sim.config import SimulationParams

from .road_network import LaneIndex, Roadway
from .vehicles import MotionState, Vehicle


KMH_PER_MS = 3.6
EPS = 1e-6
STOP_SPEED = 0.5              # [km/h] below this a decelerating vehicle is stopped
STOPPED_LEADER_SPEED = 0.1    # [km/h]
CLOSE_GAP_FACTOR = 1.5        # bumper gap, in own lengths, that counts as "close"

MOVING = int(MotionState.MOVING)
STOPPED = int(MotionState.STOPPED)


@njit
def follow_speed(
    speed: float,
    desired: float,
    accel_factor: float,
    gap: float,
    leader_speed: float,
    leader_length: float,
    own_length: float,
    dt: float,
    k: float,
    speed_limit: float,
    time_headway: float,
    max_decel: float,
    buffer: float,
    standstill: float,
    stop_brake_factor: float,
) -> float:
    """
    Relax/brake car-following rule for one vehicle and one tick.

    Speeds in km/h, gap and lengths in metres (gap is measured between
    positions, so it includes the leader's length), dt in seconds.
    Returns the new speed in km/h, never negative.
    """
    v = speed + (desired - speed) * k * accel_factor * dt
    if v > speed_limit:
        v = speed_limit
    if v < 0.0:
        v = 0.0

    v_ms = v / KMH_PER_MS
    lead_ms = leader_speed / KMH_PER_MS
    safe = time_headway * v_ms + leader_length

    if gap <= safe + buffer:
        room = gap - leader_length - standstill
        if room < EPS:
            room = EPS
        decel = (v_ms * v_ms - lead_ms * lead_ms) / (2.0 * room)
        if decel < 0.0:
            decel = 0.0
        if decel > max_decel:
            decel = max_decel
        target = v_ms - decel * dt

        # inside the headway: pull toward the speed the gap allows
        if gap < safe:
            headway_speed = 0.0
            if time_headway > 0.0 and gap > leader_length:
                headway_speed = (gap - leader_length) / time_headway
            if v_ms > headway_speed:
                capped = v_ms - max_decel * dt
                if capped < headway_speed:
                    capped = headway_speed
                if capped < target:
                    target = capped

        v_ms = target
        if lead_ms <= STOPPED_LEADER_SPEED / KMH_PER_MS and gap - leader_length < CLOSE_GAP_FACTOR * own_length:
            v_ms *= stop_brake_factor

    if v_ms < 0.0:
        v_ms = 0.0
    return v_ms * KMH_PER_MS


@njit
def advance_vehicle(
    speed: float,
    desired: float,
    accel_factor: float,
    own_length: float,
    state: int,
    gap: float,
    leader_speed: float,
    leader_length: float,
    dt: float,
    k: float,
    speed_limit: float,
    time_headway: float,
    max_decel: float,
    buffer: float,
    standstill: float,
    stop_brake_factor: float,
) -> Tuple[float, float, int, bool]:
    """
    One vehicle, one tick: (new speed [km/h], move [km], state, blocked).

    A STOPPED vehicle stays put until the gap clears the safe distance of
    its restart speed plus the hysteresis buffer. `blocked` means the move
    would bring it closer than the standstill gap to the leader's rear.
    """
    if state == STOPPED:
        restart = desired * k * accel_factor * dt
        if restart > speed_limit:
            restart = speed_limit
        restart_safe = time_headway * restart / KMH_PER_MS + leader_length
        if gap <= restart_safe + buffer:
            return 0.0, 0.0, STOPPED, False
        speed = 0.0

    v = follow_speed(
        speed, desired, accel_factor, gap, leader_speed, leader_length, own_length,
        dt, k, speed_limit, time_headway, max_decel, buffer, standstill, stop_brake_factor,
    )

    new_state = MOVING
    if v < STOP_SPEED and v <= speed:
        v = 0.0
        new_state = STOPPED

    move_m = v / KMH_PER_MS * dt
    blocked = move_m > 0.0 and move_m > gap - leader_length - standstill
    return v, move_m / 1000.0, new_state, blocked


@njit(parallel=True)
def kinematics_kernel(
    positions: np.ndarray,
    speeds: np.ndarray,
    desired: np.ndarray,
    accel_factors: np.ndarray,
    lengths: np.ndarray,
    states: np.ndarray,
    held: np.ndarray,
    leader_idx: np.ndarray,
    lane_length: float,
    dt: float,
    k: float,
    speed_limit: float,
    time_headway: float,
    max_decel: float,
    buffer: float,
    standstill: float,
    stop_brake_factor: float,
    out_speeds: np.ndarray,
    out_moves: np.ndarray,
    out_states: np.ndarray,
    out_blocked: np.ndarray,
) -> None:
    """
    Compute phase for the whole population.

    Reads only the snapshot arrays and writes only slot i of the outputs,
    so iterations are independent and may run in any order or in parallel.
    leader_idx[i] is the index of i's lane leader, or -1 for a free lane.
    """
    n = positions.shape[0]

    for i in prange(n):
        if held[i]:
            out_speeds[i] = 0.0
            out_moves[i] = 0.0
            out_states[i] = STOPPED
            out_blocked[i] = False
        else:
            j = leader_idx[i]
            gap = np.inf
            leader_speed = 0.0
            leader_length = 0.0
            if j >= 0:
                d = positions[j] - positions[i]
                if d < 0.0:
                    d += lane_length
                gap = d * 1000.0
                leader_speed = speeds[j]
                leader_length = lengths[j]

            v, move, state, blocked = advance_vehicle(
                speeds[i], desired[i], accel_factors[i], lengths[i], states[i],
                gap, leader_speed, leader_length,
                dt, k, speed_limit, time_headway, max_decel, buffer, standstill, stop_brake_factor,
            )
            out_speeds[i] = v
            out_moves[i] = move
            out_states[i] = state
            out_blocked[i] = blocked


KinematicsKernel = Callable[..., None]

# Same loop body executed by the interpreter; reference for the compiled kernel.
sequential_kernel: KinematicsKernel = kinematics_kernel.py_func


@dataclass
class KinematicsBatch:
    """Per-vehicle results of the compute phase, aligned with the input order."""

    speeds: np.ndarray
    moves: np.ndarray
    states: np.ndarray
    blocked: np.ndarray


def physics_args(params: SimulationParams, dt: float) -> Tuple[float, ...]:
    return (
        dt,
        params.k,
        params.speed_limit,
        params.time_headway,
        params.max_deceleration,
        params.hysteresis_buffer,
        params.min_standstill_gap,
        params.stop_brake_factor,
    )


def leader_terms(
    follower: Vehicle, leader: Optional[Vehicle], roadway: Roadway
) -> Tuple[float, float, float]:
    """(gap [m], leader speed [km/h], leader length [m]) for a possibly absent leader."""
    if leader is None:
        return np.inf, 0.0, 0.0
    gap = roadway.gap(follower.position, leader.position) * 1000.0
    return gap, leader.speed, leader.length


def compute_movements(
    vehicles: Sequence[Vehicle],
    index: LaneIndex,
    params: SimulationParams,
    dt: float,
    held: AbstractSet[int] = frozenset(),
    kernel: Optional[KinematicsKernel] = None,
) -> KinematicsBatch:
    """
    Compute phase of the tick: new speed, move and state for every vehicle,
    from the snapshot only. Nothing is committed here.
    """
    kernel = kernel or kinematics_kernel
    n = len(vehicles)
    slot = {v.id: i for i, v in enumerate(vehicles)}

    positions = np.empty(n, dtype=np.float64)
    speeds = np.empty(n, dtype=np.float64)
    desired = np.empty(n, dtype=np.float64)
    accel_factors = np.empty(n, dtype=np.float64)
    lengths = np.empty(n, dtype=np.float64)
    states = np.empty(n, dtype=np.int64)
    held_arr = np.zeros(n, dtype=np.bool_)
    leader_idx = np.full(n, -1, dtype=np.int64)

    for i, v in enumerate(vehicles):
        positions[i] = v.position
        speeds[i] = v.speed
        desired[i] = v.desired_speed
        accel_factors[i] = v.vehicle_class.value.accel_factor
        lengths[i] = v.length
        states[i] = int(v.motion_state)
        held_arr[i] = v.id in held
        leader = index.leader_of(v)
        if leader is not None:
            leader_idx[i] = slot[leader.id]

    batch = KinematicsBatch(
        speeds=np.zeros(n, dtype=np.float64),
        moves=np.zeros(n, dtype=np.float64),
        states=np.zeros(n, dtype=np.int64),
        blocked=np.zeros(n, dtype=np.bool_),
    )
    if n == 0:
        return batch

    kernel(
        positions, speeds, desired, accel_factors, lengths, states, held_arr, leader_idx,
        index.roadway.length, *physics_args(params, dt),
        batch.speeds, batch.moves, batch.states, batch.blocked,
    )
    return batch


def advance_in_lane(
    v: Vehicle,
    leader: Optional[Vehicle],
    roadway: Roadway,
    params: SimulationParams,
    dt: float,
) -> Tuple[float, float, int, bool]:
    """Single-vehicle compute step against an explicit leader (used after a lane change)."""
    gap, leader_speed, leader_length = leader_terms(v, leader, roadway)
    return advance_vehicle(
        v.speed, v.desired_speed, v.vehicle_class.value.accel_factor, v.length, int(v.motion_state),
        gap, leader_speed, leader_length, *physics_args(params, dt),
    )


def projected_acceleration(
    v: Vehicle,
    leader: Optional[Vehicle],
    roadway: Roadway,
    params: SimulationParams,
    dt: float,
) -> float:
    """
    Acceleration [m/s^2] the car-following rule would give `v` behind `leader`
    this tick; the leader may be hypothetical (a candidate lane).
    """
    gap, leader_speed, leader_length = leader_terms(v, leader, roadway)
    new_speed = follow_speed(
        v.speed, v.desired_speed, v.vehicle_class.value.accel_factor,
        gap, leader_speed, leader_length, v.length, *physics_args(params, dt),
    )
    return (new_speed - v.speed) / KMH_PER_MS / dt


def hard_stop_states(batch: KinematicsBatch, indices: List[int]) -> None:
    """Fallback for blocked vehicles that could not escape by changing lanes."""
    for i in indices:
        batch.speeds[i] = 0.0
        batch.moves[i] = 0.0
        batch.states[i] = STOPPED
        batch.blocked[i] = False
