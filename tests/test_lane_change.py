import numpy as np

from freeway_sim.config import SimulationParams
from freeway_sim.model.lane_change import EXIT, KEEP_RIGHT, OVERTAKE_LEFT, LaneChangeEngine
from freeway_sim.model.road_network import LaneIndex, Roadway
from freeway_sim.model.traffic_rules import TrafficRule, exit_lane, get_policy


DT = 0.1


def _engine(rule, num_lanes=2, **overrides):
    params = SimulationParams(num_lanes=num_lanes, **overrides)
    road = Roadway(length=1.0, num_lanes=num_lanes)
    return LaneChangeEngine(params, rule, np.random.default_rng(7), road, DT), road


def _eager(make_vehicle, vehicle_id, **kwargs):
    """Driver that always acts on a clear incentive."""
    return make_vehicle(vehicle_id, lane_change_probability=1.0, lane_stickiness=0.0, **kwargs)


def test_single_lane_never_changes(make_vehicle):
    engine, road = _engine("american", num_lanes=1)
    vehicles = [_eager(make_vehicle, 0, position=0.0), make_vehicle(1, position=0.03, speed=40.0)]

    assert engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0) == {}


def test_overtakes_slow_leader_on_the_left(make_vehicle):
    engine, road = _engine("american")
    v = _eager(make_vehicle, 0, position=0.0, speed=100.0, desired_speed=120.0)
    slow = make_vehicle(1, position=0.03, speed=40.0)
    vehicles = [v, slow]

    decisions = engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0)

    assert set(decisions) == {0}
    assert decisions[0].from_lane == 0
    assert decisions[0].to_lane == 1
    assert decisions[0].reason == OVERTAKE_LEFT
    assert decisions[0].score > 0.0


def test_cooldown_blocks_a_second_change(make_vehicle):
    engine, road = _engine("american", lane_change_cooldown=3.0)
    v = _eager(make_vehicle, 0, position=0.0, speed=100.0, desired_speed=120.0, last_lane_change_time=9.0)
    slow = make_vehicle(1, position=0.03, speed=40.0)
    vehicles = [v, slow]

    assert engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0) == {}


def test_held_vehicle_is_not_evaluated(make_vehicle):
    engine, road = _engine("american")
    v = _eager(make_vehicle, 0, position=0.0, speed=100.0, desired_speed=120.0)
    slow = make_vehicle(1, position=0.03, speed=40.0)
    vehicles = [v, slow]

    assert engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0, held={0}) == {}


def test_occupied_target_lane_is_unsafe(make_vehicle):
    engine, road = _engine("american")
    v = _eager(make_vehicle, 0, position=0.0, speed=100.0, desired_speed=120.0)
    slow = make_vehicle(1, position=0.03, speed=40.0)
    alongside = make_vehicle(2, position=0.001, lane=1, speed=100.0)
    vehicles = [v, slow, alongside]

    assert engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0) == {}


def test_european_rule_pulls_back_right(make_vehicle):
    engine, road = _engine("european", lane_change_threshold=0.5)
    v = _eager(make_vehicle, 0, position=0.0, lane=1)
    vehicles = [v]

    decisions = engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0)

    assert decisions[0].to_lane == 0
    assert decisions[0].reason == KEEP_RIGHT


def test_american_rule_does_not_force_return_right(make_vehicle):
    engine, road = _engine("american", lane_change_threshold=0.5)
    v = _eager(make_vehicle, 0, position=0.0, lane=1)
    vehicles = [v]

    assert engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0) == {}


def test_exit_override_heads_for_rule_exit_lane(make_vehicle):
    for rule, start, target in (("american", 1, 0), ("european", 0, 1)):
        engine, road = _engine(rule)
        v = make_vehicle(
            0, position=0.0, lane=start, planned_trip_distance=10.0, distance_traveled=9.8,
            lane_change_probability=0.0,
        )
        vehicles = [v]

        decisions = engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0)

        assert decisions[0].to_lane == target
        assert decisions[0].reason == EXIT


def test_exit_override_can_respect_the_gate(make_vehicle):
    engine, road = _engine("american", exit_override_bypasses_gate=False)
    v = make_vehicle(
        0, position=0.0, lane=1, planned_trip_distance=10.0, distance_traveled=9.8,
        lane_change_probability=0.0,
    )
    vehicles = [v]

    assert engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0) == {}


def test_conflicting_merges_keep_the_higher_score(make_vehicle):
    engine, road = _engine("european", num_lanes=3)
    from_right = _eager(make_vehicle, 0, position=0.0, lane=0, speed=100.0, desired_speed=120.0)
    from_left = _eager(make_vehicle, 1, position=0.0, lane=2, speed=100.0, desired_speed=120.0)
    slow_right = make_vehicle(2, position=0.03, lane=0, speed=40.0)
    slow_left = make_vehicle(3, position=0.03, lane=2, speed=40.0)
    vehicles = [from_right, from_left, slow_right, slow_left]

    decisions = engine.decide(vehicles, LaneIndex.build(vehicles, road), now=10.0)

    assert set(decisions) == {1}
    assert decisions[1].to_lane == 1


def test_rule_policies():
    road = Roadway(length=1.0, num_lanes=4)
    assert exit_lane("american", road) == 0
    assert exit_lane(TrafficRule.EUROPEAN, road) == 3
    assert get_policy("european").right_threshold_factor is None
    assert get_policy("american").right_threshold_factor > get_policy("american").left_threshold_factor
    assert get_policy("european").keep_right_pull > get_policy("american").keep_right_pull


def test_merge_conflict_spacing_grows_with_speed(make_vehicle):
    engine, _ = _engine("european", num_lanes=3)
    # 30 m apart: enough at 20 km/h, inside the safe gap at 100 km/h
    slow_a = make_vehicle(0, position=0.0, lane=0, speed=20.0)
    slow_b = make_vehicle(1, position=0.03, lane=2, speed=20.0)
    fast_a = make_vehicle(0, position=0.0, lane=0, speed=100.0)
    fast_b = make_vehicle(1, position=0.03, lane=2, speed=100.0)

    assert not engine._too_close(slow_a, slow_b)
    assert engine._too_close(fast_a, fast_b)
    assert engine._too_close(fast_b, fast_a)
