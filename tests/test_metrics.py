import time

import pytest

from freeway_sim.metrics.timers import Timer, walltime
from freeway_sim.metrics.traffic_stats import find_packs, sample_snapshot, stabilized_value
from freeway_sim.metrics.types import SimulationMetricsRaw
from freeway_sim.model.events import EventLog, EventType


def test_find_packs_splits_on_gap_and_speed(make_vehicle):
    vehicles = [
        make_vehicle(0, position=0.10, speed=80.0),
        make_vehicle(1, position=0.15, speed=82.0),
        make_vehicle(2, position=0.20, speed=81.0),
        # gap too large
        make_vehicle(3, position=0.50, speed=80.0),
        # speed differential too large
        make_vehicle(4, position=0.55, speed=120.0),
        make_vehicle(5, position=0.20, speed=50.0, lane=1),
    ]

    packs = find_packs(vehicles, lane_length=1.0, num_lanes=2)

    assert len(packs) == 1
    assert packs[0].lane == 0
    assert packs[0].size == 3
    assert packs[0].length == pytest.approx(0.10)
    assert packs[0].mean_speed == pytest.approx(81.0)


def test_find_packs_across_the_wrap_point(make_vehicle):
    vehicles = [
        make_vehicle(0, position=0.97, speed=60.0),
        make_vehicle(1, position=0.02, speed=60.0),
        make_vehicle(2, position=0.50, speed=60.0),
    ]

    packs = find_packs(vehicles, lane_length=1.0, num_lanes=1)

    assert [p.size for p in packs] == [2]
    assert packs[0].length == pytest.approx(0.05)


def test_sample_snapshot(make_vehicle):
    vehicles = [
        make_vehicle(0, position=0.1, speed=100.0, lane=0),
        make_vehicle(1, position=0.5, speed=50.0, lane=0),
        make_vehicle(2, position=0.3, speed=90.0, lane=1),
        make_vehicle(3, position=0.7, speed=80.0, lane=2),
    ]

    s = sample_snapshot(vehicles, lane_length=2.0, num_lanes=3, time=4.0)

    assert s.time == 4.0
    assert s.density == pytest.approx(2.0)
    assert s.average_speed == pytest.approx(80.0)
    assert s.throughput == pytest.approx(160.0)
    assert s.lane_percentages == pytest.approx([50.0, 25.0, 25.0])
    assert s.lane_speeds == pytest.approx([75.0, 90.0, 80.0])


def test_empty_snapshot():
    s = sample_snapshot([], lane_length=1.0, num_lanes=2)
    assert s.average_speed == 0.0
    assert s.lane_percentages == [0.0, 0.0]


def test_stabilized_value_detects_flat_series():
    settled = stabilized_value([50.0 + (i % 2) * 0.1 for i in range(40)])
    assert settled.is_stabilized
    assert settled.value == pytest.approx(50.05, abs=0.05)

    ramp = stabilized_value([float(i * 10) for i in range(20)])
    assert not ramp.is_stabilized


def test_stabilized_value_short_series_returns_last_value():
    short = stabilized_value([1.0, 2.0, 3.0])
    assert short.value == 3.0
    assert not short.is_stabilized
    assert short.confidence == 0.0


def test_raw_metrics_count_events(make_vehicle):
    log = EventLog()
    v = make_vehicle(0)
    log.emit(EventType.EXIT, v)
    log.emit(EventType.ENTER, v)
    log.emit(EventType.LANE_CHANGE, v)
    log.emit(EventType.LANE_CHANGE, v)

    raw = SimulationMetricsRaw()
    raw.record_events(log.drain())

    assert (raw.exits, raw.entries, raw.lane_changes) == (1, 1, 2)
    assert len(log) == 0


def test_summary_without_samples():
    summary = SimulationMetricsRaw().compute_summary()
    assert summary["average_speed"] == 0.0
    assert summary["lane_percentages"] == []


def test_event_payload(make_vehicle):
    log = EventLog()
    event = log.emit(EventType.LANE_CHANGE, make_vehicle(3, position=0.25, speed=70.0, lane=1))

    assert event.to_dict() == {
        "type": "laneChange",
        "vehicleId": 3,
        "name": "Car 4",
        "position": 0.25,
        "speed": 70.0,
        "lane": 1,
    }
    assert log.counts() == {"exit": 0, "enter": 0, "laneChange": 1}


def test_timer_measures_elapsed_time():
    with Timer() as t:
        time.sleep(0.01)
    assert t.elapsed >= 0.01

    with walltime("sleep") as w:
        time.sleep(0.01)
    assert w.elapsed >= 0.01
