from __future__ import annotations

from mpi4py import MPI

from freeway_sim.config import SimulationConfig, SimulationParams
from freeway_sim.experiments.runner import partition_points, run_sweep, sweep_points
from freeway_sim.io.logging_utils import setup_logging, logger
from freeway_sim.io.results_writer import save_sweep_as_csv
from freeway_sim.metrics.timers import Timer


def main() -> None:
    # Initialize logging (each rank gets the same config; summary is logged only on rank 0)
    setup_logging()

    comm = MPI.COMM_WORLD
    rank = comm.Get_rank()
    size = comm.Get_size()

    # Hard-coded parameter sweep for MPI experiments
    cfg = SimulationConfig(
        backend="numba",
        total_time=600.0,    # simulated time per run [s]
        random_seed=42,
        num_threads=1,       # one core per rank
        params=SimulationParams(freeway_length=2.0),
    )
    points = sweep_points(
        densities=[10, 20, 40, 60, 80, 100, 120],
        lane_counts=[2, 3, 4],
        mean_speeds=[100.0],
    )
    replications = 3

    # Each rank runs a disjoint share of the sweep points
    local_points = partition_points(points, rank, size)
    with Timer() as t:
        local_rows = run_sweep(cfg, local_points, replications)

    gathered = comm.gather(local_rows, root=0)
    wall_time = comm.reduce(t.elapsed, op=MPI.MAX, root=0)  # max wall time across ranks

    if rank == 0:
        rows = [row for chunk in gathered for row in chunk]
        rows.sort(key=lambda r: (r.point.traffic_density, r.point.num_lanes, r.point.mean_speed))

        logger.info("=== MPI sweep finished ===")
        logger.info(f"Ranks: {size}, points: {len(points)}, replications: {replications}")
        logger.info(f"Wall time: {wall_time:.4f} s")

        path = save_sweep_as_csv(rows, cfg.output_dir)
        logger.info(f"Results saved to {path}")


if __name__ == "__main__":
    main()
