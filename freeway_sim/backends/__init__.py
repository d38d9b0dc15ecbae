from typing import Dict, Type

from freeway_sim.backends.base_backend import SimulationBackend
from freeway_sim.backends.backend_sequential import SequentialBackend
from freeway_sim.backends.backend_numba import NumbaBackend

# run_mpi.py distributes whole runs across ranks; every rank uses one of these

BACKENDS: Dict[str, Type[SimulationBackend]] = {
    SequentialBackend.name: SequentialBackend,
    NumbaBackend.name: NumbaBackend,
}


def get_backend(name: str) -> Type[SimulationBackend]:
    try:
        return BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown backend '{name}'. Available: {', '.join(BACKENDS.keys())}"
        )
