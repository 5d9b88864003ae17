import numpy as np
import logging

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple
from numpy.typing import NDArray

from constrained_motion_planning.problems.configuration import ConfigurationSpace
from constrained_motion_planning.problems.constraint_set import ConstraintSet
from constrained_motion_planning.problems.errors import ProjectionError

logger = logging.getLogger(__name__)

# maximal distance between the end of a path and the start of the next one in a PathVector
CONTINUITY_THRESHOLD = 1e-8


class Path(ABC):
    """
    A continuous motion in configuration space, parameterized by time.

    compute(t) returns the raw curve. eval(t) additionally sets the right hand
    side of the attached constraints to the value at t and projects the
    configuration, which may fail.

    The constraint set is copied on construction: two paths never share it.
    """

    def __init__(
        self,
        space: ConfigurationSpace,
        time_range: Tuple[float, float],
        constraints: Optional[ConstraintSet] = None,
    ):
        self.space = space
        self.time_range = (float(time_range[0]), float(time_range[1]))

        assert self.time_range[0] <= self.time_range[1]

        self.constraints = None if constraints is None else constraints.copy()

    @property
    def length(self) -> float:
        return self.time_range[1] - self.time_range[0]

    @property
    def output_size(self) -> int:
        return self.space.config_size

    @property
    def output_derivative_size(self) -> int:
        return self.space.tangent_size

    @abstractmethod
    def compute(self, t: float) -> NDArray:
        pass

    @abstractmethod
    def _derivative(self, t: float, order: int) -> NDArray:
        pass

    @abstractmethod
    def copy(self, constraints: Optional[ConstraintSet] = None) -> "Path":
        """Copy of the path, with the given constraints or the current ones if None."""
        pass

    def constraint_parameter(self, t: float) -> float:
        """Parameter at which the right hand side of the constraints is evaluated."""
        return t

    def eval(self, t: float) -> Tuple[NDArray, bool]:
        q = self.compute(t)
        if self.constraints is None:
            return q, True

        self.constraints.right_hand_side_at(self.constraint_parameter(t))
        return self.constraints.apply(q)

    def derivative(self, t: float, order: int = 1) -> NDArray:
        if order not in (1, 2):
            raise ValueError(f"Derivative of order {order} is not supported")
        return self._derivative(t, order)

    def initial(self) -> NDArray:
        return self.compute(self.time_range[0])

    def end(self) -> NDArray:
        return self.compute(self.time_range[1])

    def extract(self, t0: float, t1: float) -> "Path":
        """
        Part of the path between t0 and t1. If t0 > t1, the part is reversed.
        """
        lo, hi = self.time_range
        eps = 1e-12
        if min(t0, t1) < lo - eps or max(t0, t1) > hi + eps:
            raise ProjectionError(
                f"Can not extract [{t0}, {t1}] from a path defined on [{lo}, {hi}]"
            )

        return ExtractedPath(self, min(max(t0, lo), hi), min(max(t1, lo), hi))

    def reverse(self) -> "Path":
        return self.extract(self.time_range[1], self.time_range[0])

    def check_path(self):
        """Raises a ProjectionError if one of the endpoints violates the constraints."""
        if self.constraints is None:
            return

        for t, q in ((self.time_range[0], self.initial()), (self.time_range[1], self.end())):
            self.constraints.right_hand_side_at(self.constraint_parameter(t))
            ok, error = self.constraints.is_satisfied_with_error(q)
            if not ok:
                raise ProjectionError(
                    f"Configuration at parameter {t} does not satisfy the constraints, error: {error}"
                )


class StraightPath(Path):
    """Linear interpolation on the configuration manifold."""

    def __init__(
        self,
        space: ConfigurationSpace,
        init: NDArray,
        end: NDArray,
        time_range: Optional[Tuple[float, float]] = None,
        constraints: Optional[ConstraintSet] = None,
    ):
        self._init = np.array(init, dtype=np.float64)
        self._end = np.array(end, dtype=np.float64)
        self._diff = space.difference(self._end, self._init)

        if time_range is None:
            time_range = (0.0, float(np.linalg.norm(self._diff)))

        super().__init__(space, time_range, constraints)

    def __repr__(self):
        return f"StraightPath({self._init} -> {self._end}, {self.time_range})"

    def _u(self, t: float) -> float:
        if self.length == 0.0:
            return 0.0
        return (t - self.time_range[0]) / self.length

    def compute(self, t: float) -> NDArray:
        if t == self.time_range[0]:
            return self._init.copy()
        if t == self.time_range[1]:
            return self._end.copy()
        return self.space.integrate(self._init, self._u(t) * self._diff)

    def _derivative(self, t: float, order: int) -> NDArray:
        if order == 2 or self.length == 0.0:
            return np.zeros(self.space.tangent_size)
        return self._diff / self.length

    def copy(self, constraints: Optional[ConstraintSet] = None) -> "StraightPath":
        return StraightPath(
            self.space,
            self._init,
            self._end,
            self.time_range,
            self.constraints if constraints is None else constraints,
        )


class InterpolatedPath(Path):
    """
    Piecewise straight path through a sequence of waypoints.
    By default the time between two waypoints is their distance.
    """

    def __init__(
        self,
        space: ConfigurationSpace,
        waypoints: Sequence[NDArray],
        times: Optional[Sequence[float]] = None,
        constraints: Optional[ConstraintSet] = None,
    ):
        assert len(waypoints) >= 2

        self.waypoints = [np.array(q, dtype=np.float64) for q in waypoints]

        if times is None:
            dists = [space.distance(a, b) for a, b in zip(self.waypoints[:-1], self.waypoints[1:])]
            times = np.concatenate([[0.0], np.cumsum(dists)])

        self.times = np.asarray(times, dtype=np.float64)

        if len(self.times) != len(self.waypoints):
            raise ValueError("Need exactly one time per waypoint")
        if np.any(np.diff(self.times) <= 0.0):
            raise ValueError("Waypoint times must be strictly increasing")

        super().__init__(space, (self.times[0], self.times[-1]), constraints)

    def __repr__(self):
        return f"InterpolatedPath({len(self.waypoints)} waypoints, {self.time_range})"

    def interpolation_points(self) -> List[Tuple[float, NDArray]]:
        return [(t, q.copy()) for t, q in zip(self.times, self.waypoints)]

    def _segment(self, t: float) -> int:
        i = int(np.searchsorted(self.times, t, side="right")) - 1
        return min(max(i, 0), len(self.times) - 2)

    def compute(self, t: float) -> NDArray:
        i = self._segment(t)
        if t == self.times[i]:
            return self.waypoints[i].copy()
        if t == self.times[i + 1]:
            return self.waypoints[i + 1].copy()

        u = (t - self.times[i]) / (self.times[i + 1] - self.times[i])
        return self.space.interpolate(self.waypoints[i], self.waypoints[i + 1], u)

    def _derivative(self, t: float, order: int) -> NDArray:
        if order == 2:
            return np.zeros(self.space.tangent_size)

        i = self._segment(t)
        diff = self.space.difference(self.waypoints[i + 1], self.waypoints[i])
        return diff / (self.times[i + 1] - self.times[i])

    def copy(self, constraints: Optional[ConstraintSet] = None) -> "InterpolatedPath":
        return InterpolatedPath(
            self.space,
            self.waypoints,
            self.times,
            self.constraints if constraints is None else constraints,
        )


class ExtractedPath(Path):
    """
    Window [t0, t1] of another path. If t0 > t1 the window is traversed backwards.
    The window keeps the time parameterization of the original path.
    """

    def __init__(
        self,
        original: Path,
        t0: float,
        t1: float,
        constraints: Optional[ConstraintSet] = None,
    ):
        self.original = original
        self.reversed = t0 > t1
        self.bounds = (float(t0), float(t1))

        if constraints is None:
            constraints = original.constraints

        super().__init__(original.space, (min(t0, t1), max(t0, t1)), constraints)

    def __repr__(self):
        return f"ExtractedPath({self.original}, {self.bounds})"

    def constraint_parameter(self, t: float) -> float:
        if self.reversed:
            return self.time_range[0] + self.time_range[1] - t
        return t

    def compute(self, t: float) -> NDArray:
        return self.original.compute(self.constraint_parameter(t))

    def _derivative(self, t: float, order: int) -> NDArray:
        d = self.original.derivative(self.constraint_parameter(t), order)
        if self.reversed and order == 1:
            return -d
        return d

    def initial(self) -> NDArray:
        return self.original.compute(self.bounds[0])

    def end(self) -> NDArray:
        return self.original.compute(self.bounds[1])

    def copy(self, constraints: Optional[ConstraintSet] = None) -> "ExtractedPath":
        return ExtractedPath(
            self.original,
            self.bounds[0],
            self.bounds[1],
            self.constraints if constraints is None else constraints,
        )


class PathVector(Path):
    """
    Ordered concatenation of paths.

    The time range starts at 0 and is the sum of the lengths of the sub-paths.
    Sub-paths are evaluated with their own constraints.
    """

    def __init__(self, space: ConfigurationSpace, constraints: Optional[ConstraintSet] = None):
        self.paths: List[Path] = []
        super().__init__(space, (0.0, 0.0), constraints)

    def __repr__(self):
        return f"PathVector({self.paths})"

    @classmethod
    def from_paths(cls, space: ConfigurationSpace, paths: Sequence[Path]) -> "PathVector":
        pv = cls(space)
        for p in paths:
            pv.append_path(p)
        return pv

    def number_paths(self) -> int:
        return len(self.paths)

    def path_at_rank(self, rank: int) -> Path:
        return self.paths[rank]

    def append_path(self, path: Path):
        if self.paths:
            gap = self.space.distance(self.end(), path.initial())
            if gap > CONTINUITY_THRESHOLD:
                raise ValueError(f"Appended path does not start at the end of the path vector, gap: {gap}")

        self.paths.append(path)
        self.time_range = (0.0, self.time_range[1] + path.length)

    def concatenate(self, other: "PathVector"):
        for p in other.paths:
            self.append_path(p)

    def rank_at_param(self, t: float) -> Tuple[int, float]:
        """Index of the sub-path containing t and the corresponding local parameter."""
        if not self.paths:
            raise ValueError("Empty path vector")

        start = 0.0
        for i, p in enumerate(self.paths):
            if t <= start + p.length or i == len(self.paths) - 1:
                local = p.time_range[0] + min(max(t - start, 0.0), p.length)
                return i, local
            start += p.length

        raise AssertionError("unreachable")

    def compute(self, t: float) -> NDArray:
        i, local = self.rank_at_param(t)
        return self.paths[i].compute(local)

    def eval(self, t: float) -> Tuple[NDArray, bool]:
        i, local = self.rank_at_param(t)
        return self.paths[i].eval(local)

    def _derivative(self, t: float, order: int) -> NDArray:
        i, local = self.rank_at_param(t)
        return self.paths[i].derivative(local, order)

    def initial(self) -> NDArray:
        if not self.paths:
            raise ValueError("Empty path vector")
        return self.paths[0].initial()

    def end(self) -> NDArray:
        if not self.paths:
            raise ValueError("Empty path vector")
        return self.paths[-1].end()

    def flatten(self) -> "PathVector":
        """New path vector in which nested path vectors are replaced by their sub-paths."""
        res = PathVector(self.space, self.constraints)
        for p in self.paths:
            if isinstance(p, PathVector):
                for sub in p.flatten().paths:
                    res.append_path(sub)
            else:
                res.append_path(p)
        return res

    def check_path(self):
        for p in self.paths:
            p.check_path()

    def copy(self, constraints: Optional[ConstraintSet] = None) -> "PathVector":
        res = PathVector(self.space, self.constraints if constraints is None else constraints)
        for p in self.paths:
            res.append_path(p.copy())
        return res
