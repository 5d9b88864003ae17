import numpy as np
import logging

from typing import List, Optional, Sequence, Tuple
from numpy.typing import NDArray

from .configuration import ConfigurationSpace
from .constraints import DifferentiableFunction, NumericalConstraint
from .constraint_stack import ConstraintStack
from .parameters import ConfigProjectorConfig, ParameterStore
from .solver import (
    HierarchicalIterativeSolver,
    LineSearchType,
    SolverStatus,
    kernel_projector,
)
from .util import SuccessStatistics

logger = logging.getLogger(__name__)


class ConfigProjector:
    """
    Projects configurations onto the manifold defined by a prioritized stack of
    numerical constraints.

    The constraints are solved numerically by a Newton-Raphson like method
    (see HierarchicalIterativeSolver). Numerical constraints are added with
    ConfigProjector.add; by default at priority 0. If the last priority level
    is flagged optional, failing to solve it does not make a projection fail.

    Configurations passed in are never modified, every method that produces a
    configuration returns a new array.
    """

    def __init__(
        self,
        space: ConfigurationSpace,
        name: str = "",
        config: ConfigProjectorConfig = ConfigProjectorConfig(),
    ):
        self.space = space
        self.name = name
        self.stack = ConstraintStack(space)
        self.solver = HierarchicalIterativeSolver(
            self.stack,
            config.error_threshold,
            config.max_iterations,
            config.line_search_type,
        )
        self._statistics = SuccessStatistics(name)

    @classmethod
    def from_parameters(
        cls, space: ConfigurationSpace, parameters: ParameterStore, name: str = ""
    ) -> "ConfigProjector":
        return cls(space, name, ConfigProjectorConfig.from_parameters(parameters))

    def copy(self) -> "ConfigProjector":
        """
        Copy sharing the constraint objects, but with its own right hand side,
        solver state and statistics. Use one copy per execution context.
        """
        other = ConfigProjector.__new__(ConfigProjector)
        other.space = self.space
        other.name = self.name
        other.stack = self.stack.copy()
        other.solver = self.solver.copy(other.stack)
        other._statistics = SuccessStatistics(self.name)
        return other

    def __repr__(self):
        return (
            f"ConfigProjector({self.name}, constraints: {self.numerical_constraints()}, "
            f"error threshold: {self.error_threshold}, max iter.: {self.max_iterations})"
        )

    # ------------------------------------------------------------
    # --- stack management ---
    # ------------------------------------------------------------

    def contains(self, constraint: NumericalConstraint) -> bool:
        return self.stack.contains(constraint)

    def add(
        self,
        constraint: NumericalConstraint,
        priority: int = 0,
        passive_dofs: Optional[Sequence[int]] = None,
    ) -> bool:
        return self.stack.add(constraint, priority, passive_dofs)

    @property
    def last_is_optional(self) -> bool:
        return self.stack.last_is_optional

    @last_is_optional.setter
    def last_is_optional(self, optional: bool):
        self.stack.last_is_optional = optional

    def numerical_constraints(self) -> List[NumericalConstraint]:
        return self.stack.numerical_constraints()

    # ------------------------------------------------------------
    # --- solver settings ---
    # ------------------------------------------------------------

    @property
    def error_threshold(self) -> float:
        return self.solver.error_threshold

    @error_threshold.setter
    def error_threshold(self, threshold: float):
        self.solver.error_threshold = threshold

    @property
    def max_iterations(self) -> int:
        return self.solver.max_iterations

    @max_iterations.setter
    def max_iterations(self, iterations: int):
        self.solver.max_iterations = iterations

    @property
    def line_search_type(self) -> LineSearchType:
        return self.solver.line_search_type

    @line_search_type.setter
    def line_search_type(self, ls: LineSearchType):
        self.solver.line_search_type = ls

    @property
    def residual_error(self) -> float:
        return self.solver.residual_error

    @property
    def sigma(self) -> float:
        return self.solver.sigma

    def statistics(self) -> SuccessStatistics:
        return self._statistics

    # ------------------------------------------------------------
    # --- projection ---
    # ------------------------------------------------------------

    def apply(self, q: NDArray) -> Tuple[NDArray, bool]:
        """Projects q onto the constraint manifold."""
        q_proj, status = self.solver.solve(q)

        if status == SolverStatus.SUCCESS:
            self._statistics.add_success()
            return q_proj, True

        self._statistics.add_failure(status)
        logger.debug(f"{self.name}: projection failed ({status.value}), {self._statistics}")
        return q_proj, False

    def one_step(self, q: NDArray) -> Tuple[NDArray, bool]:
        return self.solver.one_step(self.solver.explicit_solve(np.array(q, dtype=np.float64)))

    def compute_value_and_jacobian(self, q: NDArray) -> Tuple[NDArray, NDArray]:
        return self.solver.compute_value_and_jacobian(q)

    def optimize(
        self,
        q: NDArray,
        max_iter: int = 0,
        cost: Optional[DifferentiableFunction] = None,
    ) -> Tuple[NDArray, bool]:
        """
        Decreases a scalar cost while staying on the manifold of the required levels.

        The cost is either the given one-output function or, if omitted, half the
        squared error of the optional last level. Steps follow the negative cost
        gradient projected onto the kernel of the required Jacobian; every trial
        configuration is projected back onto the manifold.

        Returns the resulting configuration and whether a strictly improving
        feasible step was found.
        """
        if cost is None and (not self.last_is_optional or not self.stack.levels):
            return q, False

        q, ok = self.apply(q)
        if not ok:
            return q, False

        max_iter = max_iter if max_iter > 0 else self.max_iterations
        num_required = len(self.stack.required_levels())

        def cost_value_and_gradient(x: NDArray) -> Tuple[float, NDArray]:
            if cost is not None:
                g = np.asarray(cost.jacobian(x), dtype=np.float64).reshape(-1)
                return float(cost.value(x)[0]), self.stack.compress_vector(g)

            e, J = self.solver.evaluate_levels(x, self.stack.levels[-1:])[0]
            return 0.5 * float(e @ e), J.T @ e

        c, g = cost_value_and_gradient(q)
        improved = False
        alpha = 1.0

        for _ in range(max_iter):
            levels = self.solver.evaluate_levels(q, self.stack.levels[:num_required])
            if levels:
                J = np.vstack([Jl for _, Jl in levels])
                d = -kernel_projector(J) @ g
            else:
                d = -g

            if np.linalg.norm(d) < 1e-12:
                break

            trial = self.space.integrate(q, alpha * self.stack.uncompress_vector(d))
            trial, status = self.solver.solve(trial, include_optional=False)

            if status == SolverStatus.SUCCESS:
                c_trial, g_trial = cost_value_and_gradient(trial)
                if c_trial < c:
                    q, c, g = trial, c_trial, g_trial
                    improved = True
                    continue

            alpha *= 0.5
            if alpha < 1e-6:
                break

        logger.debug(f"{self.name}: optimize finished with cost {c}, improved = {improved}")
        return q, improved

    def project_vector_on_kernel(self, from_q: NDArray, velocity: NDArray) -> NDArray:
        """
        (I - pinv(J) J) velocity, with J the reduced Jacobian at from_q.
        Locked dofs can not move and get a zero velocity.
        """
        _, J = self.compute_value_and_jacobian(from_q)
        small = self.stack.compress_vector(np.asarray(velocity, dtype=np.float64))

        if J.shape[0] > 0:
            small = kernel_projector(J) @ small

        return self.stack.uncompress_vector(small)

    def project_on_kernel(self, from_q: NDArray, to_q: NDArray) -> NDArray:
        """Configuration close to to_q, compatible with the constraints at from_q to first order."""
        v = self.project_vector_on_kernel(from_q, self.space.difference(to_q, from_q))
        return self.space.integrate(from_q, v)

    # ------------------------------------------------------------
    # --- degrees of freedom ---
    # ------------------------------------------------------------

    def number_free_variables(self) -> int:
        return self.stack.number_free_variables()

    def dimension(self) -> int:
        return self.stack.dimension()

    def compress_vector(self, normal: NDArray) -> NDArray:
        return self.stack.compress_vector(normal)

    def uncompress_vector(self, small: NDArray) -> NDArray:
        return self.stack.uncompress_vector(small)

    def compress_matrix(self, normal: NDArray, rows: bool = True) -> NDArray:
        return self.stack.compress_matrix(normal, rows)

    def uncompress_matrix(self, small: NDArray, rows: bool = True) -> NDArray:
        return self.stack.uncompress_matrix(small, rows)

    # ------------------------------------------------------------
    # --- right hand side ---
    # ------------------------------------------------------------

    def _entry(self, constraint: NumericalConstraint):
        entry = self.stack.find(constraint)
        if entry is None:
            raise ValueError(f"{constraint} is not part of {self.name}")
        return entry

    def right_hand_side_from_config(
        self, q: NDArray, constraint: Optional[NumericalConstraint] = None
    ) -> NDArray:
        """
        Sets the right hand side of the equality constraints (or of a single one)
        to their value at q, i.e. selects the leaf of the foliation q lies on.
        Inequality constraints are left untouched. Returns the new right hand side.
        """
        entries = self.stack.equality_entries() if constraint is None else [self._entry(constraint)]

        for e in entries:
            if not e.constraint.is_equality:
                continue
            e.rhs = np.asarray(e.constraint.function.value(q), dtype=np.float64).reshape(-1)

        if constraint is None:
            return self.stack.right_hand_side()
        return entries[0].rhs.copy()

    def right_hand_side(self, constraint: Optional[NumericalConstraint] = None) -> NDArray:
        if constraint is None:
            return self.stack.right_hand_side()
        return self._entry(constraint).rhs.copy()

    def set_right_hand_side(self, rhs: NDArray, constraint: Optional[NumericalConstraint] = None):
        if constraint is None:
            self.stack.set_right_hand_side(rhs)
            return

        e = self._entry(constraint)
        rhs = np.asarray(rhs, dtype=np.float64).reshape(-1)
        assert len(rhs) == e.constraint.output_size
        e.rhs = rhs.copy()

    def right_hand_side_at(self, s: float):
        """Evaluates the parameterized right hand sides at the path parameter s."""
        for e in self.stack.entries():
            f = e.constraint.right_hand_side_function
            if f is not None:
                e.rhs = np.asarray(f(s), dtype=np.float64).reshape(-1)

    # ------------------------------------------------------------
    # --- satisfaction ---
    # ------------------------------------------------------------

    def _checked_entries(self):
        optional = self.stack.levels[-1] if self.last_is_optional and self.stack.levels else []
        return [e for e in self.stack.entries() if not any(e is o for o in optional)]

    def is_satisfied_with_error(
        self, q: NDArray, error_threshold: Optional[float] = None
    ) -> Tuple[bool, NDArray]:
        """
        Checks every constraint separately (uncompressed) against the threshold.
        Also returns the concatenated error for diagnostics.
        """
        if error_threshold is None:
            error_threshold = self.error_threshold

        satisfied = True
        errors = []
        for e in self._checked_entries():
            c = e.constraint
            err, _ = c.error(c.function.value(q), e.rhs)
            errors.append(err)
            if np.linalg.norm(err) >= error_threshold:
                satisfied = False

        error = np.concatenate(errors) if errors else np.zeros(0)
        return satisfied, error

    def is_satisfied(self, q: NDArray, error_threshold: Optional[float] = None) -> bool:
        return self.is_satisfied_with_error(q, error_threshold)[0]
