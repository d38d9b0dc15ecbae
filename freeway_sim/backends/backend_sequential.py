from freeway_sim.backends.base_backend import SimulationBackend
from freeway_sim.model.kinematics import KinematicsKernel, sequential_kernel


class SequentialBackend(SimulationBackend):
    """
    Sequential implementation of the simulation.
    The kinematics loop runs in the interpreter; used as the reference
    for speedup measurements.
    """

    name = "sequential"

    def kernel(self) -> KinematicsKernel:
        return sequential_kernel
