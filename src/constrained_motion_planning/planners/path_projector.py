import numpy as np

from abc import ABC, abstractmethod
from typing import Callable, Tuple
from numpy.typing import NDArray

from constrained_motion_planning.planners.paths import Path
from constrained_motion_planning.planners.steering_methods import SteeringMethod


class PathProjector(ABC):
    """
    Turns a path into a path whose every configuration satisfies the path
    constraints. When the projection fails, the returned path is the part of
    the projection that could be computed, starting at the same configuration.
    """

    def __init__(
        self,
        distance: Callable[[NDArray, NDArray], float],
        steering_method: SteeringMethod,
    ):
        self.distance = distance
        self.steering_method = steering_method

    def apply(self, path: Path) -> Tuple[Path, bool]:
        projection, success = self.impl_apply(path)

        assert np.allclose(projection.initial(), path.initial(), atol=1e-8)
        assert not success or np.allclose(projection.end(), path.end(), atol=1e-8)

        return projection, success

    @abstractmethod
    def impl_apply(self, path: Path) -> Tuple[Path, bool]:
        pass

    def steer(self, q1: NDArray, q2: NDArray, time_range=None) -> Path:
        return self.steering_method.steer(q1, q2, time_range)
