from abc import ABC, abstractmethod
from typing import Optional, Tuple
from numpy.typing import NDArray

from constrained_motion_planning.problems.configuration import ConfigurationSpace
from constrained_motion_planning.problems.constraint_set import ConstraintSet
from constrained_motion_planning.planners.hermite import HermitePath
from constrained_motion_planning.planners.paths import Path, StraightPath


class SteeringMethod(ABC):
    """
    Builds a path between two configurations, without checking collisions.
    The constraint set, if any, is attached to every produced path.
    """

    def __init__(self, space: ConfigurationSpace, constraints: Optional[ConstraintSet] = None):
        self.space = space
        self.constraints = constraints

    @abstractmethod
    def steer(
        self, q1: NDArray, q2: NDArray, time_range: Optional[Tuple[float, float]] = None
    ) -> Path:
        pass


class StraightSteeringMethod(SteeringMethod):
    def steer(self, q1, q2, time_range=None) -> StraightPath:
        return StraightPath(self.space, q1, q2, time_range, self.constraints)


class HermiteSteeringMethod(SteeringMethod):
    """Produces Hermite curves, by default on the time range [0, 1]."""

    def steer(self, q1, q2, time_range=None) -> HermitePath:
        if time_range is None:
            time_range = (0.0, 1.0)
        return HermitePath(self.space, q1, q2, self.constraints, time_range)
