import time
from contextlib import contextmanager

from freeway_sim.io.logging_utils import logger


class Timer:
    """
    Context for wall time measurement.
    """

    def __enter__(self):
        self.start = time.perf_counter()
        self.elapsed = 0.0
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start


@contextmanager
def walltime(label: str = "run"):
    """
    Alternative context manager, logs instead of returning the time.
    """

    with Timer() as t:
        yield t
    logger.info(f"[TIMER] {label}: {t.elapsed:.4f} s")
