import logging

from dataclasses import dataclass
from typing import Optional, Tuple
from numpy.typing import NDArray

from constrained_motion_planning.problems.util import sample_times
from constrained_motion_planning.planners.paths import Path, PathVector

logger = logging.getLogger(__name__)


@dataclass
class PathValidationReport:
    # parameter of the first configuration violating the constraints
    parameter: float
    error: NDArray


class ConstraintPathValidation:
    """
    Checks that a path satisfies its constraints by sampling it at a fixed resolution.
    Path vectors are checked sub-path by sub-path, each with its own constraints.
    """

    def __init__(self, resolution: float, error_threshold: Optional[float] = None):
        assert resolution > 0
        self.resolution = resolution
        self.error_threshold = error_threshold

    def validate(self, path: Path) -> Tuple[bool, Path, Optional[PathValidationReport]]:
        """
        Returns whether the path is valid, the longest valid prefix found and,
        if the path is invalid, a report on the first violation.
        """
        if isinstance(path, PathVector):
            return self._validate_vector(path)

        t_start = path.time_range[0]
        if path.constraints is None:
            return True, path, None

        t_valid = t_start
        for t in sample_times(path.time_range, self.resolution):
            path.constraints.right_hand_side_at(path.constraint_parameter(t))
            q = path.compute(t)

            projector = path.constraints.config_projector
            if projector is None:
                break

            ok, error = projector.is_satisfied_with_error(q, self.error_threshold)
            if not ok:
                logger.debug(f"Constraint violation at parameter {t}, error: {error}")
                return False, path.extract(t_start, t_valid), PathValidationReport(t, error)

            t_valid = t

        return True, path, None

    def _validate_vector(self, path: PathVector) -> Tuple[bool, Path, Optional[PathValidationReport]]:
        valid = PathVector(path.space, path.constraints)
        offset = 0.0

        for i in range(path.number_paths()):
            sub = path.path_at_rank(i)
            ok, prefix, report = self.validate(sub)

            if not ok:
                if prefix.length > 0 or valid.number_paths() == 0:
                    valid.append_path(prefix)
                # parameter of the violation in the time frame of the path vector
                report.parameter = offset + report.parameter - sub.time_range[0]
                return False, valid, report

            valid.append_path(sub)
            offset += sub.length

        return True, path, None
