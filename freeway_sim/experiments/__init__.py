from freeway_sim.config import SimulationConfig, SimulationParams
from freeway_sim.backends import get_backend, BACKENDS


__all__ = ["SimulationConfig", "SimulationParams", "get_backend", "BACKENDS"]
