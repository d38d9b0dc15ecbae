from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, List, Optional

import numpy as np

from freeway_sim.config import SimulationParams

from .kinematics import KMH_PER_MS, projected_acceleration
from .road_network import LaneIndex, Roadway
from .traffic_rules import RulePolicy, TrafficRule, exit_lane, get_policy
from .vehicles import Vehicle


OVERTAKE_LEFT = "overtake-left"
OVERTAKE_RIGHT = "overtake-right"
KEEP_RIGHT = "keep-right"
EXIT = "exit"


@dataclass(frozen=True)
class LaneChangeDecision:
    vehicle_id: int
    from_lane: int
    to_lane: int
    score: float                 # incentive after bias/pull [m/s^2]
    reason: str


@dataclass(frozen=True)
class Candidate:
    lane: int
    safe: bool
    incentive: float = 0.0
    leader: Optional[Vehicle] = None
    leader_gap: float = np.inf   # [m]


class LaneChangeEngine:
    """
    MOBIL-style discretionary lane changes under a traffic-rule policy.

    Every decision is computed from the snapshot held by the LaneIndex, so
    the outcome does not depend on the order vehicles are evaluated in.
    Random draws happen in vehicle-id order, which keeps seeded runs
    reproducible.
    """

    def __init__(
        self,
        params: SimulationParams,
        rule: TrafficRule | str,
        rng: np.random.Generator,
        roadway: Roadway,
        dt: float,
    ) -> None:
        self.params = params
        self.rule = TrafficRule(rule)
        self.policy: RulePolicy = get_policy(self.rule)
        self.rng = rng
        self.roadway = roadway
        self.dt = dt
        self.exit_lane = exit_lane(self.rule, roadway)

    # ------------------------ PUBLIC API ------------------------

    def decide(
        self,
        vehicles: Iterable[Vehicle],
        index: LaneIndex,
        now: float,
        held: AbstractSet[int] = frozenset(),
    ) -> Dict[int, LaneChangeDecision]:
        """
        Return accepted lane changes keyed by vehicle id (at most one each).

        Vehicles held in place externally and vehicles still in their
        cooldown are not evaluated.
        """
        if self.roadway.num_lanes < 2:
            return {}

        proposals: List[LaneChangeDecision] = []
        for v in sorted(vehicles, key=lambda x: x.id):
            if v.id in held:
                continue
            if not v.can_change_lane(now, self.params.lane_change_cooldown):
                continue
            decision = self.evaluate(v, index)
            if decision is not None:
                proposals.append(decision)

        return self._resolve_conflicts(proposals, index)

    def evaluate(self, v: Vehicle, index: LaneIndex) -> Optional[LaneChangeDecision]:
        leader = index.leader_of(v)
        a_current = projected_acceleration(v, leader, self.roadway, self.params, self.dt)
        bonus = self.params.gridlock_bonus if self._stuck_behind(v, leader) else 0.0

        if v.remaining_distance <= self.params.exit_zone_distance:
            return self._exit_decision(v, index, a_current, bonus)
        return self._policy_decision(v, index, a_current, bonus)

    # ------------------------ INCENTIVE ------------------------

    def candidate(self, v: Vehicle, lane: int, index: LaneIndex, a_current: float) -> Candidate:
        """
        Safety check and MOBIL incentive for moving `v` into `lane`:

        incentive = a(new lane) - a(current lane)
                    + politeness * (a(new follower) - a(new follower before))
        """
        p = self.params
        road = self.roadway
        leader = index.leader(lane, v.position, v.id)
        follower = index.follower(lane, v.position, v.id)

        leader_gap = np.inf
        if leader is not None:
            leader_gap = road.gap(v.position, leader.position) * 1000.0
            if leader_gap < leader.length + p.min_standstill_gap:
                return Candidate(lane=lane, safe=False)

        follower_delta = 0.0
        if follower is not None:
            gap_behind = road.gap(follower.position, v.position) * 1000.0
            if gap_behind < v.length + p.min_standstill_gap:
                return Candidate(lane=lane, safe=False)
            a_before = projected_acceleration(follower, index.leader_of(follower), road, p, self.dt)
            a_after = projected_acceleration(follower, v, road, p, self.dt)
            if a_after < -p.max_safe_deceleration:
                return Candidate(lane=lane, safe=False)
            follower_delta = a_after - a_before

        a_new = projected_acceleration(v, leader, road, p, self.dt)
        incentive = a_new - a_current + p.politeness_factor * follower_delta
        return Candidate(lane=lane, safe=True, incentive=incentive, leader=leader, leader_gap=leader_gap)

    def _stuck_behind(self, v: Vehicle, leader: Optional[Vehicle]) -> bool:
        if leader is None or not leader.is_stopped:
            return False
        gap = self.roadway.gap(v.position, leader.position) * 1000.0
        reach = self.params.time_headway * v.speed / KMH_PER_MS + leader.length + self.params.hysteresis_buffer
        return gap <= reach

    # ------------------------ POLICY ------------------------

    def _policy_decision(
        self, v: Vehicle, index: LaneIndex, a_current: float, bonus: float
    ) -> Optional[LaneChangeDecision]:
        p = self.params
        policy = self.policy
        threshold = p.lane_change_threshold

        best: Optional[LaneChangeDecision] = None
        best_acceptance = 0.0

        for lane in self.roadway.adjacent_lanes(v.lane):
            cand = self.candidate(v, lane, index, a_current)
            if not cand.safe:
                continue
            score = cand.incentive + bonus
            option: Optional[LaneChangeDecision] = None
            acceptance = 1.0

            if lane > v.lane:
                if score > threshold * policy.left_threshold_factor:
                    option = LaneChangeDecision(v.id, v.lane, lane, score, OVERTAKE_LEFT)
                    acceptance = policy.left_acceptance
            else:
                score += p.right_lane_bias
                if self._can_return_right(v, cand):
                    pulled = score + policy.keep_right_pull
                    if pulled > threshold * policy.keep_right_threshold_factor:
                        option = LaneChangeDecision(v.id, v.lane, lane, pulled, KEEP_RIGHT)
                        acceptance = policy.keep_right_acceptance
                elif (
                    policy.right_threshold_factor is not None
                    and score > threshold * policy.right_threshold_factor
                    and self.rng.random() < policy.right_overtake_gate
                ):
                    option = LaneChangeDecision(v.id, v.lane, lane, score, OVERTAKE_RIGHT)

            if option is not None and (best is None or option.score > best.score):
                best = option
                best_acceptance = acceptance

        if best is None:
            return None
        if not self._gate(v, best.score, best_acceptance):
            return None
        return best

    def _can_return_right(self, v: Vehicle, cand: Candidate) -> bool:
        """Not actively passing anyone in the right lane, and that lane is clear enough."""
        if cand.leader is None:
            return True
        if cand.leader_gap >= self.policy.keep_right_clear_gap:
            return True
        # right lane flows as fast as we want: nothing left to pass
        return cand.leader.speed >= v.desired_speed and cand.leader_gap >= self.policy.passing_window

    def _exit_decision(
        self, v: Vehicle, index: LaneIndex, a_current: float, bonus: float
    ) -> Optional[LaneChangeDecision]:
        """
        Head for the exit lane with a relaxed threshold. When the step toward
        it is not possible this tick, settle for the other edge lane if it is
        adjacent.
        """
        road = self.roadway
        target = self.exit_lane
        if v.lane == target:
            return None

        other_edge = road.leftmost_lane if target == road.rightmost_lane else road.rightmost_lane
        options = [v.lane - 1 if target < v.lane else v.lane + 1]
        if v.lane != other_edge and abs(other_edge - v.lane) == 1:
            options.append(other_edge)

        for lane in options:
            cand = self.candidate(v, lane, index, a_current)
            if not cand.safe:
                continue
            score = cand.incentive + bonus
            if score <= -self.params.exit_relaxed_threshold:
                continue
            if not self.params.exit_override_bypasses_gate:
                if not self._gate(v, score + self.params.exit_relaxed_threshold, 1.0):
                    return None
            return LaneChangeDecision(v.id, v.lane, lane, score, EXIT)
        return None

    # ------------------------ STOCHASTIC GATE ------------------------

    def _gate(self, v: Vehicle, score: float, acceptance: float) -> bool:
        """
        Execute with probability
        clamp(score * (1 - stickiness) / threshold, 0, 1) * lane change probability * acceptance.
        """
        strength = score * (1.0 - v.lane_stickiness) / self.params.lane_change_threshold
        strength = min(max(strength, 0.0), 1.0)
        probability = min(strength * v.lane_change_probability * acceptance, 1.0)
        return self.rng.random() < probability

    # ------------------------ CONFLICTS ------------------------

    def _resolve_conflicts(
        self, proposals: List[LaneChangeDecision], index: LaneIndex
    ) -> Dict[int, LaneChangeDecision]:
        """
        Two vehicles merging into the same lane side by side: keep the one
        with the higher score (lower id on ties).
        """
        accepted: Dict[int, LaneChangeDecision] = {}
        claimed: Dict[int, List[Vehicle]] = {}

        for d in sorted(proposals, key=lambda x: (-x.score, x.vehicle_id)):
            v = index.get(d.vehicle_id)
            if any(self._too_close(v, other) for other in claimed.get(d.to_lane, [])):
                continue
            accepted[d.vehicle_id] = d
            claimed.setdefault(d.to_lane, []).append(v)
        return accepted

    def _too_close(self, a: Vehicle, b: Vehicle) -> bool:
        ahead = self.roadway.gap(a.position, b.position)
        behind = self.roadway.gap(b.position, a.position)
        h = self.params.time_headway
        needed = max(a.virtual_length(h), b.virtual_length(h)) + self.params.min_standstill_gap / 1000.0
        return min(ahead, behind) < needed
