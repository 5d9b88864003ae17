import numpy as np

from collections import Counter
from typing import Any, Callable, List, Tuple
from numpy.typing import NDArray


class SuccessStatistics:
    """Counts successes and failures of an operation, failures by reason."""

    def __init__(self, name: str = ""):
        self.name = name
        self.num_success = 0
        self.failures: Counter = Counter()

    def __repr__(self):
        return (
            f"{self.name}: {self.num_success} successes / {self.num_failures} failures "
            f"({dict(self.failures)})"
        )

    def add_success(self):
        self.num_success += 1

    def add_failure(self, reason: Any):
        self.failures[reason] += 1

    @property
    def num_failures(self) -> int:
        return sum(self.failures.values())

    @property
    def num_events(self) -> int:
        return self.num_success + self.num_failures


def sample_times(time_range: Tuple[float, float], resolution: float) -> NDArray:
    """
    Times at which to sample a path at the given resolution.
    Both ends of the time range are always included.
    """
    t0, t1 = time_range
    N = int(np.ceil(abs(t1 - t0) / resolution))
    N = max(1, N)
    return np.linspace(t0, t1, N + 1)


def sample_path(path, resolution: float = 0.1) -> List[NDArray]:
    """
    Takes a path and samples its raw curve at the given time resolution.
    """
    return [path.compute(t) for t in sample_times(path.time_range, resolution)]


def segment_lengths(path_vector, distance: Callable[[NDArray, NDArray], float]) -> NDArray:
    """Distance between the endpoints of every segment of a path vector."""
    return np.array(
        [
            distance(path_vector.path_at_rank(i).initial(), path_vector.path_at_rank(i).end())
            for i in range(path_vector.number_paths())
        ]
    )
