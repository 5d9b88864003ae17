import numpy as np

import logging

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence
from numpy.typing import NDArray

from .configuration import ConfigurationSpace
from .constraints import NumericalConstraint

logger = logging.getLogger(__name__)


@dataclass
class StackEntry:
    constraint: NumericalConstraint
    priority: int
    rhs: NDArray
    passive_dofs: NDArray

    def copy(self) -> "StackEntry":
        return StackEntry(
            self.constraint, self.priority, self.rhs.copy(), self.passive_dofs.copy()
        )


class ConstraintStack:
    """
    Ordered set of numerical constraints, partitioned in priority levels.

    Level 0 has the highest priority. Explicit constraints (e.g. locked joints)
    are kept in a separate tier: the tangent dimensions they determine are
    removed from the free variables of the solver, which is what the
    compress/uncompress methods expose.

    The stack owns the working right hand side of every member, so that copies
    share the constraint objects but never their right hand side.
    """

    def __init__(self, space: ConfigurationSpace):
        self.space = space
        self.levels: List[List[StackEntry]] = []
        self.explicit: List[StackEntry] = []
        self.last_is_optional = False

        self._update_partition()

    def copy(self) -> "ConstraintStack":
        other = ConstraintStack(self.space)
        other.levels = [[e.copy() for e in level] for level in self.levels]
        other.explicit = [e.copy() for e in self.explicit]
        other.last_is_optional = self.last_is_optional
        other._update_partition()
        return other

    def __len__(self) -> int:
        return sum(len(level) for level in self.levels) + len(self.explicit)

    def entries(self) -> Iterator[StackEntry]:
        """All members, priority levels first, then the explicit tier."""
        for level in self.levels:
            yield from level
        yield from self.explicit

    def numerical_constraints(self) -> List[NumericalConstraint]:
        return [e.constraint for e in self.entries()]

    def find(self, constraint: NumericalConstraint) -> Optional[StackEntry]:
        for e in self.entries():
            if e.constraint is constraint:
                return e
        return None

    def contains(self, constraint: NumericalConstraint) -> bool:
        return self.find(constraint) is not None

    def add(
        self,
        constraint: NumericalConstraint,
        priority: int = 0,
        passive_dofs: Optional[Sequence[int]] = None,
    ) -> bool:
        """
        Inserts the constraint at the given priority level.
        Returns False without touching the stack if the very same constraint
        object is already a member (at any priority, with any options).
        """
        if self.contains(constraint):
            logger.debug(f"{constraint} is already in the stack")
            return False

        if passive_dofs is None:
            passive_dofs = []

        entry = StackEntry(
            constraint,
            priority,
            constraint.right_hand_side.copy(),
            np.asarray(passive_dofs, dtype=np.int64),
        )

        if constraint.is_explicit:
            outputs = set(constraint.function.output_indices.tolist())
            if outputs & set(self.locked_dofs.tolist()):
                logger.warning(
                    f"{constraint} determines dofs that are already locked, not adding it"
                )
                return False

            self.explicit.append(entry)
            self._update_partition()
            return True

        while len(self.levels) <= priority:
            self.levels.append([])

        self.levels[priority].append(entry)
        return True

    def is_optional_level(self, priority: int) -> bool:
        return self.last_is_optional and priority == len(self.levels) - 1

    def required_levels(self) -> List[List[StackEntry]]:
        if self.last_is_optional:
            return self.levels[:-1]
        return self.levels

    # ------------------------------------------------------------
    # --- degree of freedom partition ---
    # ------------------------------------------------------------

    def _update_partition(self):
        locked = set()
        for e in self.explicit:
            locked.update(e.constraint.function.output_indices.tolist())

        self.locked_dofs = np.array(sorted(locked), dtype=np.int64)
        self.free_dofs = np.array(
            [i for i in range(self.space.tangent_size) if i not in locked],
            dtype=np.int64,
        )

    def number_free_variables(self) -> int:
        return len(self.free_dofs)

    def implicit_dimension(self) -> int:
        return sum(e.constraint.output_size for level in self.levels for e in level)

    def dimension(self) -> int:
        return self.implicit_dimension() + len(self.locked_dofs)

    def compress_vector(self, normal: NDArray) -> NDArray:
        return normal[self.free_dofs]

    def uncompress_vector(self, small: NDArray) -> NDArray:
        normal = np.zeros(self.space.tangent_size)
        normal[self.free_dofs] = small
        return normal

    def compress_matrix(self, normal: NDArray, rows: bool = True) -> NDArray:
        """
        Removes the columns of the locked dofs, and the rows as well if rows is True
        (for square matrices acting on the tangent space).
        """
        small = normal[:, self.free_dofs]
        if rows:
            small = small[self.free_dofs, :]
        return small

    def uncompress_matrix(self, small: NDArray, rows: bool = True) -> NDArray:
        n = self.space.tangent_size
        if rows:
            normal = np.zeros((n, n))
            normal[np.ix_(self.free_dofs, self.free_dofs)] = small
        else:
            normal = np.zeros((small.shape[0], n))
            normal[:, self.free_dofs] = small
        return normal

    # ------------------------------------------------------------
    # --- right hand side ---
    # ------------------------------------------------------------

    def equality_entries(self) -> List[StackEntry]:
        return [e for e in self.entries() if e.constraint.is_equality]

    def right_hand_side(self) -> NDArray:
        rhs = [e.rhs for e in self.equality_entries()]
        if not rhs:
            return np.zeros(0)
        return np.concatenate(rhs)

    def set_right_hand_side(self, rhs: NDArray):
        rhs = np.asarray(rhs, dtype=np.float64)
        entries = self.equality_entries()

        assert len(rhs) == sum(e.constraint.output_size for e in entries)

        cnt = 0
        for e in entries:
            size = e.constraint.output_size
            e.rhs = rhs[cnt : cnt + size].copy()
            cnt += size
