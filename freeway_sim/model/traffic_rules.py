from dataclasses import dataclass
from enum import Enum
from typing import Dict

from .road_network import Roadway


class TrafficRule(str, Enum):
    AMERICAN = "american"
    EUROPEAN = "european"


@dataclass(frozen=True)
class RulePolicy:
    """
    Overtaking conventions of one traffic rule.

    Thresholds are factors of SimulationParams.lane_change_threshold,
    acceptances multiply the stochastic gate probability.
    """

    left_threshold_factor: float
    left_acceptance: float
    # None disables overtaking on the right
    right_threshold_factor: float | None
    right_overtake_gate: float
    keep_right_pull: float            # [m/s^2] added when returning right
    keep_right_threshold_factor: float
    keep_right_acceptance: float
    keep_right_clear_gap: float       # [m] free road needed ahead in the right lane
    passing_window: float             # [m] a slower right-lane vehicle this close means "still passing"
    exit_on_right: bool


POLICIES: Dict[TrafficRule, RulePolicy] = {
    # Pass on either side; keep right is recommended, not enforced.
    TrafficRule.AMERICAN: RulePolicy(
        left_threshold_factor=1.0,
        left_acceptance=1.0,
        right_threshold_factor=2.5,
        right_overtake_gate=0.3,
        keep_right_pull=0.1,
        keep_right_threshold_factor=1.0,
        keep_right_acceptance=0.5,
        keep_right_clear_gap=150.0,
        passing_window=60.0,
        exit_on_right=True,
    ),
    # Pass on the left only; keep right is strictly enforced.
    TrafficRule.EUROPEAN: RulePolicy(
        left_threshold_factor=0.6,
        left_acceptance=1.5,
        right_threshold_factor=None,
        right_overtake_gate=0.0,
        keep_right_pull=1.0,
        keep_right_threshold_factor=0.3,
        keep_right_acceptance=2.0,
        keep_right_clear_gap=50.0,
        passing_window=30.0,
        exit_on_right=False,
    ),
}


def get_policy(rule: "TrafficRule | str") -> RulePolicy:
    return POLICIES[TrafficRule(rule)]


def exit_lane(rule: "TrafficRule | str", roadway: Roadway) -> int:
    """Lane vehicles head for before leaving the freeway."""
    if get_policy(rule).exit_on_right:
        return roadway.rightmost_lane
    return roadway.leftmost_lane
