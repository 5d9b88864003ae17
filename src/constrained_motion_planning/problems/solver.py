from __future__ import annotations

import numpy as np
import logging

from abc import ABC, abstractmethod
from enum import Enum

from typing import List, Optional, Sequence, Tuple
from numpy.typing import NDArray
from scipy.linalg import svd

from .constraint_stack import ConstraintStack, StackEntry

logger = logging.getLogger(__name__)


class LineSearchType(Enum):
    BACKTRACKING = "backtracking"
    ERROR_NORM_BASED = "error_norm_based"
    FIXED_SEQUENCE = "fixed_sequence"
    CONSTANT = "constant"


class SolverStatus(Enum):
    SUCCESS = "success"
    MAX_ITERATION_REACHED = "max_iteration_reached"
    DEGENERATE_STEP = "degenerate_step"


# ============================================================
# LINEAR ALGEBRA HELPERS
# ============================================================


def pseudo_inverse(
    J: NDArray, rcond: float = np.finfo(float).eps, atol: float = 0.0
) -> Tuple[NDArray, float, int]:
    """
    Moore-Penrose pseudo-inverse via SVD.
    Singular values below max(rcond * max(J.shape) * s_max, atol) are treated
    as zero, which makes the inverse safe for rank deficient stacks.

    Returns the pseudo-inverse, the smallest retained singular value and the rank.
    """
    m, n = J.shape
    if J.size == 0:
        return np.zeros((n, m)), 0.0, 0

    U, S, Vt = svd(J, full_matrices=False)
    tol = max(rcond * max(m, n) * S[0], atol)
    if S[0] == 0.0 or S[0] <= tol:
        return np.zeros((n, m)), 0.0, 0

    r = int((S > tol).sum())

    pinv = (Vt[:r].T / S[:r]) @ U[:, :r].T
    return pinv, float(S[r - 1]), r


def kernel_projector(J: NDArray) -> NDArray:
    """(I - pinv(J) J), the orthogonal projector onto Null(J)."""
    n = J.shape[1]
    pinv, _, _ = pseudo_inverse(J)
    return np.eye(n) - pinv @ J


# ============================================================
# LINE SEARCHES
# ============================================================


class LineSearch(ABC):
    """
    Scales a Newton step. A new instance is created for every solve, so
    implementations can keep state across the iterations of one solve.
    """

    @abstractmethod
    def step(
        self, solver: "HierarchicalIterativeSolver", q: NDArray, dq: NDArray, error_norm: float
    ) -> NDArray:
        pass


class ConstantLineSearch(LineSearch):
    def step(self, solver, q, dq, error_norm):
        return solver.integrate(q, dq)


class BacktrackingLineSearch(LineSearch):
    """Starts at alpha = 1 and halves it while the residual does not decrease."""

    def __init__(self, min_alpha: float = 1.0 / 1024):
        self.min_alpha = min_alpha

    def step(self, solver, q, dq, error_norm):
        alpha = 1.0
        while True:
            q_new = solver.integrate(q, alpha * dq)
            if alpha <= self.min_alpha or solver.residual_norm(q_new) < error_norm:
                return q_new
            alpha *= 0.5


class ErrorNormBasedLineSearch(LineSearch):
    """
    Full steps as long as the residual decreases; when the residual grew since
    the previous iterate, the step is scaled by the inverse of that growth.
    """

    def __init__(self, min_alpha: float = 0.2):
        self.min_alpha = min_alpha
        self.previous_error_norm: Optional[float] = None

    def step(self, solver, q, dq, error_norm):
        alpha = 1.0
        if self.previous_error_norm is not None and error_norm > self.previous_error_norm:
            alpha = max(self.min_alpha, self.previous_error_norm / error_norm)

        self.previous_error_norm = error_norm
        return solver.integrate(q, alpha * dq)


def default_step_sequence(num: int = 12, alpha0: float = 0.2, k: float = 0.8) -> Tuple[float, ...]:
    seq = [alpha0]
    for _ in range(num - 1):
        seq.append(1 - k * (1 - seq[-1]))
    seq.append(1.0)
    return tuple(seq)


class FixedSequenceLineSearch(LineSearch):
    """Consumes a predetermined sequence of step scales and keeps the last one."""

    def __init__(self, sequence: Optional[Sequence[float]] = None):
        self.sequence = default_step_sequence() if sequence is None else tuple(sequence)
        assert len(self.sequence) > 0
        self.index = 0

    def step(self, solver, q, dq, error_norm):
        alpha = self.sequence[min(self.index, len(self.sequence) - 1)]
        self.index += 1
        return solver.integrate(q, alpha * dq)


def make_line_search(line_search_type: LineSearchType) -> LineSearch:
    if line_search_type == LineSearchType.BACKTRACKING:
        return BacktrackingLineSearch()
    elif line_search_type == LineSearchType.ERROR_NORM_BASED:
        return ErrorNormBasedLineSearch()
    elif line_search_type == LineSearchType.FIXED_SEQUENCE:
        return FixedSequenceLineSearch()
    elif line_search_type == LineSearchType.CONSTANT:
        return ConstantLineSearch()

    raise ValueError(f"Unknown line search type {line_search_type}")


# ============================================================
# NEWTON-RAPHSON SOLVER
# ============================================================


class HierarchicalIterativeSolver:
    """
    Newton-Raphson solver over a prioritized constraint stack.

    Every iteration evaluates the stacked error and the reduced Jacobian, and
    solves level i in the null space of the levels 0..i-1 using pseudo-inverses:

        dq_0 = pinv(J_0) (-e_0),                 P_0 = I - pinv(J_0) J_0
        dq_i = dq_{i-1} + pinv(J_i P_{i-1}) (-e_i - J_i dq_{i-1})
        P_i  = P_{i-1} - pinv(J_i P_{i-1}) J_i P_{i-1}

    The step lives in the compressed (free variable) space and is retracted on
    the configuration manifold, never added to the configuration vector.
    """

    def __init__(
        self,
        stack: ConstraintStack,
        error_threshold: float,
        max_iterations: int,
        line_search_type: LineSearchType = LineSearchType.BACKTRACKING,
        sigma_threshold: float = np.sqrt(np.finfo(float).eps),
    ):
        self.stack = stack
        self.error_threshold = error_threshold
        self.max_iterations = max_iterations
        self.line_search_type = line_search_type
        self.sigma_threshold = sigma_threshold

        self.sigma = np.inf
        self.residual_error = 0.0
        self.include_optional = True

    def copy(self, stack: ConstraintStack) -> "HierarchicalIterativeSolver":
        return HierarchicalIterativeSolver(
            stack,
            self.error_threshold,
            self.max_iterations,
            self.line_search_type,
            self.sigma_threshold,
        )

    # ------------------------------------------------------------
    # --- evaluation ---
    # ------------------------------------------------------------

    def _entry_value_and_jacobian(self, entry: StackEntry, q: NDArray) -> Tuple[NDArray, NDArray]:
        c = entry.constraint
        e, active = c.error(c.function.value(q), entry.rhs)

        J = np.array(c.function.jacobian(q), dtype=np.float64).reshape(c.output_size, -1)
        J[~active, :] = 0.0
        if len(entry.passive_dofs) > 0:
            J[:, entry.passive_dofs] = 0.0

        return e, self.stack.compress_matrix(J, rows=False)

    def evaluate_levels(self, q: NDArray, levels: Optional[List[List[StackEntry]]] = None) -> List[Tuple[NDArray, NDArray]]:
        if levels is None:
            levels = self.stack.levels

        n = self.stack.number_free_variables()
        res = []
        for level in levels:
            if not level:
                res.append((np.zeros(0), np.zeros((0, n))))
                continue

            values = [self._entry_value_and_jacobian(e, q) for e in level]
            res.append(
                (np.concatenate([v[0] for v in values]), np.vstack([v[1] for v in values]))
            )
        return res

    def compute_value_and_jacobian(self, q: NDArray) -> Tuple[NDArray, NDArray]:
        """Stacked error of all the implicit levels and the reduced Jacobian."""
        levels = self.evaluate_levels(q)
        n = self.stack.number_free_variables()

        if not levels:
            return np.zeros(0), np.zeros((0, n))

        return (
            np.concatenate([e for e, _ in levels]),
            np.vstack([J for _, J in levels]),
        )

    def residual_norm(self, q: NDArray, include_optional: Optional[bool] = None) -> float:
        if include_optional is None:
            include_optional = self.include_optional
        levels = self.stack.levels if include_optional else self.stack.required_levels()
        errors = [e for e, _ in self.evaluate_levels(q, levels)]
        if not errors:
            return 0.0
        return float(np.linalg.norm(np.concatenate(errors)))

    # ------------------------------------------------------------
    # --- steps ---
    # ------------------------------------------------------------

    def explicit_solve(self, q: NDArray) -> NDArray:
        """Sets the dofs determined by explicit constraints to their right hand side."""
        if not self.stack.explicit:
            return q

        v = np.zeros(self.stack.space.tangent_size)
        for e in self.stack.explicit:
            f = e.constraint.function
            v[f.output_indices] = e.rhs - f.value(q)

        return self.stack.space.integrate(q, v)

    def integrate(self, q: NDArray, dq: NDArray) -> NDArray:
        return self.explicit_solve(self.stack.space.integrate(q, dq))

    def compute_step(self, levels: List[Tuple[NDArray, NDArray]], num_required: int) -> Tuple[Optional[NDArray], float]:
        """
        Hierarchical Newton step in the free variable space.
        Returns None as step if a required level has an error but no usable Jacobian.

        A level whose directions are all constrained by the previous levels has
        only round-off left in J P. Singular values below sigma_threshold * |J|
        are dropped, so such a level is skipped instead of making the step
        degenerate.
        """
        n = self.stack.number_free_variables()
        dq = np.zeros(n)
        P = np.eye(n)
        sigma = np.inf

        for i, (e, J) in enumerate(levels):
            if len(e) == 0:
                continue

            required = i < num_required
            JP = J @ P
            J_norm = np.linalg.norm(J, 2) if J.size > 0 else 0.0
            pinv, s_min, rank = pseudo_inverse(JP, atol=self.sigma_threshold * J_norm)

            if rank == 0:
                # a vanishing jacobian cannot reduce the error of a required level
                if required and J_norm == 0.0 and np.linalg.norm(e) >= self.error_threshold:
                    return None, 0.0
                continue

            if required:
                sigma = min(sigma, s_min)

            dq = dq + pinv @ (-e - J @ dq)
            P = P - pinv @ JP

        return dq, sigma

    def one_step(self, q: NDArray, line_search: Optional[LineSearch] = None) -> Tuple[NDArray, bool]:
        """Performs a single Newton iteration. Returns False for degenerate steps."""
        if line_search is None:
            line_search = make_line_search(self.line_search_type)

        levels = self.evaluate_levels(q)
        num_required = len(self.stack.required_levels())

        error_norm = self._norm(levels)
        self.residual_error = error_norm

        dq, sigma = self.compute_step(levels, num_required)
        self.sigma = sigma

        if dq is None or sigma < self.sigma_threshold:
            return q, False

        return line_search.step(self, q, self.stack.uncompress_vector(dq), error_norm), True

    @staticmethod
    def _norm(levels: List[Tuple[NDArray, NDArray]]) -> float:
        if not levels:
            return 0.0
        return float(np.linalg.norm(np.concatenate([e for e, _ in levels])))

    def solve(self, q: NDArray, include_optional: bool = True) -> Tuple[NDArray, SolverStatus]:
        """
        Iterates until every level is below the error threshold, or the iteration
        budget is exhausted. A failing optional last level does not make the
        solve fail.
        """
        q = self.explicit_solve(np.array(q, dtype=np.float64))

        self.include_optional = include_optional
        try:
            return self._solve(q, include_optional)
        finally:
            self.include_optional = True

    def _solve(self, q: NDArray, include_optional: bool) -> Tuple[NDArray, SolverStatus]:
        levels_to_solve = self.stack.levels if include_optional else self.stack.required_levels()
        num_required = len(self.stack.required_levels())

        line_search = make_line_search(self.line_search_type)
        status = SolverStatus.MAX_ITERATION_REACHED

        for it in range(self.max_iterations + 1):
            levels = self.evaluate_levels(q, levels_to_solve)
            error_norm = self._norm(levels)
            self.residual_error = error_norm

            if error_norm < self.error_threshold:
                logger.debug(f"converged at iter {it}, residual = {error_norm}")
                return q, SolverStatus.SUCCESS

            if it == self.max_iterations:
                break

            dq, sigma = self.compute_step(levels, num_required)
            self.sigma = sigma

            if dq is None or sigma < self.sigma_threshold:
                logger.debug(f"degenerate step at iter {it}, sigma = {sigma}")
                status = SolverStatus.DEGENERATE_STEP
                break

            q = line_search.step(self, q, self.stack.uncompress_vector(dq), error_norm)

        # the optional level is allowed to fail
        required_error = self.residual_norm(q, include_optional=False)
        if required_error < self.error_threshold:
            return q, SolverStatus.SUCCESS

        logger.debug(f"solve failed ({status.value}), residual = {self.residual_error}")
        return q, status
