import numpy as np
import logging

from typing import Optional, Tuple
from numpy.typing import NDArray

from constrained_motion_planning.problems.configuration import ConfigurationSpace
from constrained_motion_planning.problems.constraint_set import ConstraintSet
from constrained_motion_planning.planners.paths import Path

logger = logging.getLogger(__name__)


def bernstein_basis(u: float) -> NDArray:
    v = 1.0 - u
    return np.array([v**3, 3 * u * v**2, 3 * u**2 * v, u**3])


def bernstein_basis_derivative(u: float, order: int) -> NDArray:
    v = 1.0 - u
    if order == 1:
        return np.array([-3 * v**2, 3 * v**2 - 6 * u * v, 6 * u * v - 3 * u**2, 3 * u**2])
    return np.array([6 * v, 6 * u - 12 * v, 6 * v - 12 * u, 6 * u])


class HermitePath(Path):
    """
    Cubic Hermite curve between two configurations, stored as a Bezier curve in
    the tangent space at the initial configuration:

        q(t) = integrate(init, sum_i B_i(u) P_i),   u = (t - t0) / (t1 - t0)

    P0 is zero and P3 = difference(end, init). The inner control points encode
    the boundary velocities:

        v0 = 3 (P1 - P0) / dt,   v1 = 3 (P3 - P2) / dt

    On construction the boundary velocities are set to the straight difference
    P3, projected onto the kernel of the constraint Jacobian at each endpoint.

    The hermite length is a cheap upper bound on the deviation of the curve from
    the straight interpolation between its endpoints. It is -1 until computed
    and is invalidated whenever a boundary velocity is set.
    """

    def __init__(
        self,
        space: ConfigurationSpace,
        init: NDArray,
        end: NDArray,
        constraints: Optional[ConstraintSet] = None,
        time_range: Tuple[float, float] = (0.0, 1.0),
    ):
        super().__init__(space, time_range, constraints)

        self._init = np.array(init, dtype=np.float64)
        self._end = np.array(end, dtype=np.float64)

        self.parameters = np.zeros((4, space.tangent_size))
        self.parameters[3] = space.difference(self._end, self._init)

        self._hermite_length = -1.0
        self._project_velocities(self._init, self._end)

    def __repr__(self):
        return (
            f"HermitePath({self._init} -> {self._end}, {self.time_range}, "
            f"hermite length: {self._hermite_length})"
        )

    def _project_velocities(self, qi: NDArray, qe: NDArray):
        P3 = self.parameters[3]
        projector = None if self.constraints is None else self.constraints.config_projector

        if projector is None:
            self.parameters[1] = P3 / 3
            self.parameters[2] = 2 * P3 / 3
        else:
            self.parameters[1] = projector.project_vector_on_kernel(qi, P3) / 3
            self.parameters[2] = P3 - projector.project_vector_on_kernel(qe, P3) / 3

        self._hermite_length = -1.0

    # ------------------------------------------------------------
    # --- boundary velocities ---
    # ------------------------------------------------------------

    @property
    def v0(self) -> NDArray:
        return 3 * (self.parameters[1] - self.parameters[0]) / self.length

    @v0.setter
    def v0(self, speed: NDArray):
        self.parameters[1] = np.asarray(speed, dtype=np.float64) / 3 * self.length
        self._hermite_length = -1.0

    @property
    def v1(self) -> NDArray:
        return 3 * (self.parameters[3] - self.parameters[2]) / self.length

    @v1.setter
    def v1(self, speed: NDArray):
        self.parameters[2] = self.parameters[3] - np.asarray(speed, dtype=np.float64) / 3 * self.length
        self._hermite_length = -1.0

    # ------------------------------------------------------------
    # --- length oracle ---
    # ------------------------------------------------------------

    @property
    def hermite_length(self) -> float:
        return self._hermite_length

    def compute_hermite_length(self) -> float:
        """
        Largest distance between an inner control point and the corresponding
        control point of the straight interpolation (P3 / 3, 2 P3 / 3).

        Since the Bernstein basis is a partition of unity, this bounds the
        distance between the curve and the straight interpolation.
        """
        P3 = self.parameters[3]
        self._hermite_length = max(
            float(np.linalg.norm(self.parameters[1] - P3 / 3)),
            float(np.linalg.norm(self.parameters[2] - 2 * P3 / 3)),
        )
        return self._hermite_length

    # ------------------------------------------------------------
    # --- evaluation ---
    # ------------------------------------------------------------

    def _u(self, t: float) -> float:
        if self.length == 0.0:
            return 0.0
        return (t - self.time_range[0]) / self.length

    def initial(self) -> NDArray:
        return self._init.copy()

    def end(self) -> NDArray:
        return self._end.copy()

    def compute(self, t: float) -> NDArray:
        if t == self.time_range[0]:
            return self._init.copy()
        if t == self.time_range[1]:
            return self._end.copy()

        return self.space.integrate(self._init, bernstein_basis(self._u(t)) @ self.parameters)

    def _derivative(self, t: float, order: int) -> NDArray:
        if self.length == 0.0:
            return np.zeros(self.space.tangent_size)

        d = bernstein_basis_derivative(self._u(t), order) @ self.parameters
        return d / self.length**order

    def velocity(self, t: float, q: Optional[NDArray] = None) -> NDArray:
        """
        Derivative of the curve at t, projected onto the kernel of the constraint
        Jacobian at q (by default the configuration of the curve at t).
        """
        v = self.derivative(t, 1)

        projector = None if self.constraints is None else self.constraints.config_projector
        if projector is None:
            return v

        if q is None:
            q = self.compute(t)
        return projector.project_vector_on_kernel(q, v)

    def copy(self, constraints: Optional[ConstraintSet] = None) -> "HermitePath":
        res = HermitePath(
            self.space,
            self._init,
            self._end,
            self.constraints if constraints is None else constraints,
            self.time_range,
        )
        res.parameters = self.parameters.copy()
        res._hermite_length = self._hermite_length
        return res
