import csv
import json

import pytest

from freeway_sim.config import SimulationConfig, SimulationParams
from freeway_sim.experiments.runner import run_single, run_sweep, sweep_points
from freeway_sim.io.results_writer import save_result_as_json, save_sweep_as_csv
from freeway_sim.io.run_store import RunNotFoundError, delete_run, list_runs, load_run, save_run


@pytest.fixture(scope="module")
def small_config():
    params = SimulationParams(traffic_density=10.0, freeway_length=1.0, num_lanes=2, traffic_rule="european")
    return SimulationConfig(total_time=3.0, sample_interval=5, params=params)


@pytest.fixture(scope="module")
def result(small_config):
    return run_single(small_config)


def test_save_result_as_json(result, tmp_path):
    path = save_result_as_json(result, str(tmp_path / "out"))

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["backend"] == "sequential"
    assert data["config"]["params"]["traffic_rule"] == "european"
    assert len(data["history"]) == len(result.history)


def test_save_sweep_as_csv_unions_lane_columns(small_config, tmp_path):
    rows = run_sweep(small_config, sweep_points([5.0], [1, 2], [100.0]))
    path = save_sweep_as_csv(rows, str(tmp_path))

    with open(path, encoding="utf-8", newline="") as f:
        records = list(csv.DictReader(f))
    assert len(records) == 2
    assert records[0]["num_lanes"] == "1"
    assert records[0]["lane_1_percentage_mean"] == ""
    assert records[1]["lane_1_percentage_mean"] != ""


def test_run_store_round_trip(result, tmp_path):
    store = str(tmp_path / "runs")
    save_run("rush hour", result, store)

    loaded = load_run("rush hour", store)
    assert loaded["name"] == "rush hour"
    assert loaded["traffic_rule"] == "european"
    assert loaded["config"] == json.loads(json.dumps(result.config))
    assert len(loaded["history"]) == len(result.history)
    assert loaded["final_stats"]["average_speed"] == pytest.approx(result.average_speed)

    assert [r["name"] for r in list_runs(store)] == ["rush hour"]

    delete_run("rush hour", store)
    assert list_runs(store) == []
    with pytest.raises(RunNotFoundError):
        load_run("rush hour", store)
    with pytest.raises(RunNotFoundError):
        delete_run("rush hour", store)


def test_run_store_overwrites_same_name(result, tmp_path):
    store = str(tmp_path)
    save_run("a", result, store)
    save_run("a", result, store)
    assert len(list_runs(store)) == 1


def test_run_store_rejects_empty_name(result, tmp_path):
    with pytest.raises(ValueError):
        save_run("  ", result, str(tmp_path))


def test_list_runs_on_missing_store(tmp_path):
    assert list_runs(str(tmp_path / "nothing")) == []
