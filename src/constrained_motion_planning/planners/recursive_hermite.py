import numpy as np
import logging

from typing import Callable, List, Optional, Sequence, Tuple
from numpy.typing import NDArray

from constrained_motion_planning.problems.errors import ConfigurationError
from constrained_motion_planning.problems.parameters import ParameterStore, RecursiveHermiteConfig
from constrained_motion_planning.problems.util import segment_lengths
from constrained_motion_planning.planners.hermite import HermitePath
from constrained_motion_planning.planners.path_projector import PathProjector
from constrained_motion_planning.planners.paths import InterpolatedPath, Path, PathVector
from constrained_motion_planning.planners.steering_methods import HermiteSteeringMethod

logger = logging.getLogger(__name__)


class RecursiveHermite(PathProjector):
    """
    Projects a path by approximating it with Hermite curves and bisecting the
    curves until each of them is close enough to the constraint manifold.

    A curve is accepted when its hermite length is below 2 * error_threshold / m,
    where m relates the constraint residual to the geometric deviation. A curve
    is split at its middle time: the middle configuration is projected, and two
    curves are built on both halves, sharing the projected velocity at the split.
    If one of the halves is not shorter than beta times the parent curve, the
    projection is considered not to make progress and fails.

    The steering method must produce Hermite curves.
    """

    def __init__(
        self,
        distance: Callable[[NDArray, NDArray], float],
        steering_method: HermiteSteeringMethod,
        m: float,
        beta: float,
        interpolation_times: Optional[Sequence[float]] = None,
        max_depth: Optional[int] = 64,
    ):
        if not isinstance(steering_method, HermiteSteeringMethod):
            raise ConfigurationError(
                f"RecursiveHermite needs a steering method producing Hermite curves, got {steering_method}"
            )
        if not 0.5 <= beta <= 1.0:
            raise ConfigurationError(f"beta should be in [0.5, 1], got {beta}")
        if m <= 0.0:
            raise ConfigurationError(f"m should be positive, got {m}")

        super().__init__(distance, steering_method)

        self.m = m
        self.beta = beta
        self.interpolation_times = (
            None if interpolation_times is None else [float(t) for t in interpolation_times]
        )
        self.max_depth = max_depth

    @classmethod
    def from_config(
        cls,
        distance: Callable[[NDArray, NDArray], float],
        steering_method: HermiteSteeringMethod,
        config: RecursiveHermiteConfig = RecursiveHermiteConfig(),
        interpolation_times: Optional[Sequence[float]] = None,
    ) -> "RecursiveHermite":
        return cls(
            distance,
            steering_method,
            config.m,
            config.beta,
            interpolation_times,
            config.max_depth,
        )

    @classmethod
    def from_parameters(
        cls,
        distance: Callable[[NDArray, NDArray], float],
        steering_method: HermiteSteeringMethod,
        parameters: ParameterStore,
    ) -> "RecursiveHermite":
        return cls.from_config(
            distance, steering_method, RecursiveHermiteConfig.from_parameters(parameters)
        )

    def impl_apply(self, path: Path) -> Tuple[Path, bool]:
        if not isinstance(path, PathVector):
            proj, success = self.project(path)
            if proj is None:
                t0 = path.time_range[0]
                return path.extract(t0, t0), False
            return proj, success

        res = PathVector(path.space, path.constraints)
        for i in range(path.number_paths()):
            part, success = self.impl_apply(path.path_at_rank(i))

            # keep the partial projection of a failing path only if it is not degenerate
            if part is not None and (part.length > 0 or i == 0):
                if isinstance(part, PathVector):
                    res.concatenate(part)
                else:
                    res.append_path(part)

            if not success:
                if res.number_paths() == 0:
                    t0 = path.time_range[0]
                    return path.extract(t0, t0), False
                return res, False

        return res, True

    def _steer(self, q1: NDArray, q2: NDArray, time_range: Tuple[float, float]) -> HermitePath:
        p = self.steer(q1, q2, time_range)
        assert isinstance(p, HermitePath)
        return p

    def _initial_segments(self, path: Path) -> List[HermitePath]:
        if isinstance(path, HermitePath):
            return [path]

        if isinstance(path, InterpolatedPath):
            points = path.interpolation_points()
            times = self.interpolation_times
            if times is None:
                times = [t for t, _ in points]

            if len(times) != len(points):
                raise ValueError(
                    f"{len(times)} interpolation times given for {len(points)} waypoints"
                )

            return [
                self._steer(q0, q1, (t0, t1))
                for (_, q0), (_, q1), t0, t1 in zip(points[:-1], points[1:], times[:-1], times[1:])
            ]

        return [self._steer(path.initial(), path.end(), path.time_range)]

    def project(self, path: Path) -> Tuple[Optional[Path], bool]:
        """
        Projects a single path. Returns None as path if the end of the path does
        not satisfy the constraints.
        """
        constraints = path.constraints
        projector = None if constraints is None else constraints.config_projector

        if projector is None or projector.dimension() == 0 or path.length == 0.0:
            return path, True

        constraints.right_hand_side_at(path.constraint_parameter(path.time_range[1]))
        if not constraints.is_satisfied(path.end()):
            logger.debug("The end of the path does not satisfy the constraints")
            return None, False

        thr = 2 * projector.error_threshold / self.m

        # segments are steered on the constraints of the path, with their current right hand side
        steering_constraints = self.steering_method.constraints
        self.steering_method.constraints = constraints

        res = PathVector(path.space)
        success = True
        try:
            for segment in self._initial_segments(path):
                if segment.compute_hermite_length() < thr:
                    res.append_path(segment)
                    continue

                part = PathVector(path.space)
                success = self.recurse(segment, part, thr)
                res.concatenate(part)

                if not success:
                    break
        finally:
            self.steering_method.constraints = steering_constraints

        self._log_segments(res)

        if success:
            return res, True

        t0 = path.time_range[0]
        if res.number_paths() == 0:
            return path.extract(t0, t0), False
        if res.number_paths() == 1:
            return res.path_at_rank(0), False
        return res, False

    def recurse(self, path: HermitePath, proj: PathVector, accept_thr: float, depth: int = 0) -> bool:
        """
        Appends to proj the curves of an accepted subdivision of path.
        Stops at the first failure, keeping the curves accepted before it.
        """
        if path.hermite_length < accept_thr:
            proj.append_path(path)
            return True

        if self.max_depth is not None and depth >= self.max_depth:
            logger.debug(f"Recursion stopped at depth {depth}, hermite length: {path.hermite_length}")
            return False

        t0, t1 = path.time_range
        t = t0 + path.length / 2

        q1, success = path.eval(t)
        if not success:
            logger.debug(f"Recursion stopped: could not project the configuration at {t}")
            return False

        q0 = path.initial()
        q2 = path.end()

        v_half = path.velocity(t, q1)

        left = self._steer(q0, q1, (t0, t))
        left.v0 = path.v0
        left.v1 = v_half
        left.compute_hermite_length()

        right = self._steer(q1, q2, (t, t1))
        right.v0 = v_half
        right.v1 = path.v1
        right.compute_hermite_length()

        stop_thr = self.beta * path.hermite_length
        if left.hermite_length > stop_thr or right.hermite_length > stop_thr:
            logger.debug(
                f"Recursion stopped: {path.hermite_length} * {self.beta} -> "
                f"{left.hermite_length} / {right.hermite_length}"
            )
            return False

        if not self.recurse(left, proj, accept_thr, depth + 1):
            return False
        return self.recurse(right, proj, accept_thr, depth + 1)

    def _log_segments(self, res: PathVector):
        if not logger.isEnabledFor(logging.DEBUG) or res.number_paths() == 0:
            return

        lengths = segment_lengths(res, self.distance)
        logger.debug(
            f"Hermite path: {res.number_paths()} segments, "
            f"[{np.min(lengths)}, {np.mean(lengths)}, {np.max(lengths)}]"
        )
