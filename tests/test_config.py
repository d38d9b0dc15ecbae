import pytest

from freeway_sim.config import ConfigurationError, SimulationConfig, SimulationParams


def test_defaults_are_valid():
    params = SimulationParams()
    assert params.validate() is params
    assert params.num_vehicles == 100


@pytest.mark.parametrize(
    "overrides",
    [
        {"num_lanes": 0},
        {"num_lanes": -2},
        {"num_lanes": 2.5},
        {"num_lanes": True},
        {"min_speed": 0.0},
        {"max_speed": -10.0},
        {"min_speed": 150.0, "max_speed": 100.0},
        {"mean_trip_distance": 0.0},
        {"sigma_trip_distance": -0.1},
        {"freeway_length": 0.0},
        {"time_step": 0.0},
        {"traffic_density": -1.0},
        {"car_percentage": 0.0, "truck_percentage": 0.0, "motorcycle_percentage": 0.0},
        {"stop_brake_factor": 1.5},
        {"traffic_rule": "british"},
        {"mean_trip_distance": float("nan")},
    ],
)
def test_invalid_configuration_fails_fast(overrides):
    with pytest.raises(ConfigurationError):
        SimulationParams(**overrides).validate()


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        SimulationParams(num_lanes=0).validate()


def test_params_dict_round_trip_ignores_unknown_keys():
    params = SimulationParams(num_lanes=4, traffic_rule="european")
    data = params.to_dict()
    data["not_a_parameter"] = 1

    restored = SimulationParams.from_dict(data)
    assert restored == params


def test_config_to_dict_nests_params():
    cfg = SimulationConfig(total_time=10.0, params=SimulationParams(num_lanes=2))
    data = cfg.to_dict()
    assert data["total_time"] == 10.0
    assert data["params"]["num_lanes"] == 2


def test_vehicle_mix_keys():
    mix = SimulationParams(car_percentage=50, truck_percentage=30, motorcycle_percentage=20).vehicle_mix
    assert mix == {"car": 50, "truck": 30, "motorcycle": 20}
