from numba import set_num_threads

from freeway_sim.backends.base_backend import SimulationBackend
from freeway_sim.config import SimulationConfig
from freeway_sim.metrics.timers import Timer
from freeway_sim.metrics.types import SimulationResult
from freeway_sim.model.kinematics import KinematicsKernel, kinematics_kernel


class NumbaBackend(SimulationBackend):
    """
    Parallel CPU backend: same WorldState model, but the compute phase
    goes through the Numba @njit(parallel=True) kinematics kernel.
    """

    name = "numba"

    def __init__(self, config: SimulationConfig):
        # Configure the number of threads used by Numba
        if config.num_threads > 0:
            set_num_threads(config.num_threads)
        super().__init__(config)

    def kernel(self) -> KinematicsKernel:
        return kinematics_kernel

    def run(self) -> SimulationResult:
        steps = self.num_steps

        # Warm-up step to trigger Numba JIT compilation (not measured)
        if steps > 0:
            self.tick(0)

        with Timer() as t:
            for i in range(1, steps):
                self.tick(i)

        return self.build_result(t.elapsed)
