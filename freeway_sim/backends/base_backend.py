from abc import ABC, abstractmethod
from typing import Optional

from freeway_sim.config import SimulationConfig
from freeway_sim.io.logging_utils import logger
from freeway_sim.metrics.timers import Timer
from freeway_sim.metrics.types import SimulationResult
from freeway_sim.model.kinematics import KinematicsKernel
from freeway_sim.model.world_state import WorldState


class SimulationBackend(ABC):
    """
    Abstract base for all backends (Sequential, Numba).
    """

    name: str = "base"

    def __init__(self, config: SimulationConfig):
        self.config = config
        self.world = WorldState(
            params=config.params,
            random_seed=config.random_seed,
            kernel=self.kernel(),
        )

    @abstractmethod
    def kernel(self) -> Optional[KinematicsKernel]:
        """Kinematics kernel the world runs its compute phase with."""
        raise NotImplementedError

    @property
    def num_steps(self) -> int:
        return int(round(self.config.total_time / self.config.params.time_step))

    def tick(self, step_no: int) -> None:
        self.world.step()
        interval = max(self.config.sample_interval, 1)
        if (step_no + 1) % interval == 0:
            self.world.sample()

    def run(self) -> SimulationResult:
        """
        Runs simulation and returns results.
        """
        steps = self.num_steps
        logger.debug(
            f"[{self.name}] {steps} steps, {len(self.world.vehicles)} vehicles, "
            f"rule={self.world.traffic_rule.value}"
        )

        with Timer() as t:
            for i in range(steps):
                self.tick(i)

        return self.build_result(t.elapsed)

    def build_result(self, wall_time: float) -> SimulationResult:
        raw = self.world.metrics_raw
        if not raw.samples:
            self.world.sample()
        summary = raw.compute_summary()

        return SimulationResult(
            backend=self.name,
            config=self.config.to_dict(),
            wall_time_seconds=wall_time,
            total_simulated_time=self.world.time,
            vehicles_in_world=len(self.world.vehicles),
            average_speed=summary["average_speed"],
            throughput=summary["throughput"],
            density=summary["density"],
            lane_percentages=summary["lane_percentages"],
            exits=raw.exits,
            entries=raw.entries,
            lane_changes=raw.lane_changes,
            history=[s.to_dict() for s in raw.samples],
            extra_stats={
                "pack_count": summary["pack_count"],
                "average_pack_size": summary["average_pack_size"],
                "speed_stabilized": summary["speed_stabilized"],
                "traffic_rule": self.world.traffic_rule.value,
            },
        )
