from freeway_sim.config import ConfigurationError, SimulationConfig, SimulationParams, TRAFFIC_RULES
from freeway_sim.experiments.runner import run_single
from freeway_sim.io.logging_utils import setup_logging, logger
from freeway_sim.io.results_writer import save_result_as_json
from freeway_sim.io.run_store import save_run
from freeway_sim.backends import BACKENDS


def choose(title: str, options, default: str) -> str:
    print(f"=== Choose {title} ===")
    for i, name in enumerate(options, start=1):
        print(f"{i}. {name}")
    choice = input("Enter number: ").strip()

    try:
        idx = int(choice) - 1
        if idx < 0:
            raise IndexError(idx)
        name = list(options)[idx]
    except (ValueError, IndexError):
        print(f"Invalid choice, falling back to '{default}'")
        name = default
    return name


def main():
    setup_logging()

    print("=== Multi-lane Freeway Simulation ===")

    backend_name = choose("backend", BACKENDS.keys(), "sequential")
    traffic_rule = choose("traffic rule", TRAFFIC_RULES, "american")

    try:
        total_time = float(input("Total simulation time [s] (default 300): ") or "300")
        density = float(input("Traffic density [veh/km] (default 20): ") or "20")
        num_lanes = int(input("Number of lanes (default 3): ") or "3")
        length = float(input("Freeway length [km] (default 5): ") or "5")
        mean_speed = float(input("Mean desired speed [km/h] (default 100): ") or "100")
    except ValueError:
        print("Invalid input, using defaults.")
        total_time, density, num_lanes, length, mean_speed = 300.0, 20.0, 3, 5.0, 100.0

    params = SimulationParams(
        traffic_density=density,
        num_lanes=num_lanes,
        freeway_length=length,
        mean_speed=mean_speed,
        traffic_rule=traffic_rule,
    )
    cfg = SimulationConfig(
        backend=backend_name,
        total_time=total_time,
        params=params,
    )

    logger.info(f"Running simulation with backend='{backend_name}', rule='{traffic_rule}'")
    try:
        result = run_single(cfg)
    except ConfigurationError as exc:
        print(f"Cannot start simulation: {exc}")
        return

    logger.info("Simulation finished.")
    logger.info(f"Wall time: {result.wall_time_seconds:.4f} s")
    logger.info(f"Vehicles in world: {result.vehicles_in_world}")
    logger.info(f"Avg speed: {result.average_speed:.1f} km/h")
    logger.info(f"Throughput: {result.throughput:.0f} veh/h")
    logger.info(f"Lane occupancy [%] (right to left): "
                f"{', '.join(f'{p:.1f}' for p in result.lane_percentages)}")
    logger.info(f"Exits: {result.exits}, lane changes: {result.lane_changes}")

    path = save_result_as_json(result, cfg.output_dir)
    logger.info(f"Results saved to {path}")

    name = input("Save this run under a name (empty to skip): ").strip()
    if name:
        save_run(name, result)


if __name__ == "__main__":
    main()
