import numpy as np

from abc import ABC, abstractmethod
from enum import Enum

from typing import Callable, Optional, Sequence, Tuple
from numpy.typing import NDArray

from .configuration import ConfigurationSpace
from .errors import ConfigurationError


class ComparisonType(Enum):
    EQUALITY = "equality"
    # value(q) <= rhs
    INFERIOR = "inferior"
    # value(q) >= rhs
    SUPERIOR = "superior"


class DifferentiableFunction(ABC):
    """
    A function of the configuration with a Jacobian expressed in the tangent
    space of the configuration space.

    Explicit functions (is_explicit = True) determine some of the tangent
    dimensions directly (listed in output_indices); the solver sets those
    dimensions analytically instead of iterating on them.
    """

    name: str
    output_size: int
    tangent_size: int
    is_explicit: bool = False

    @abstractmethod
    def value(self, q: NDArray) -> NDArray:
        pass

    @abstractmethod
    def jacobian(self, q: NDArray) -> NDArray:
        pass

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"


# function of the form
# A * coordinates(q)
# can be used to e.g. constrain the configuration to a hyperplane
# or to ensure that two joints have the same value
class AffineFunction(DifferentiableFunction):
    def __init__(self, space: ConfigurationSpace, mat: NDArray, name: str = "affine"):
        self.space = space
        self.mat = np.atleast_2d(np.asarray(mat, dtype=np.float64))
        self.name = name

        assert self.mat.shape[1] == space.tangent_size

        self.output_size = self.mat.shape[0]
        self.tangent_size = space.tangent_size

    def value(self, q: NDArray) -> NDArray:
        return self.mat @ self.space.coordinates(q)

    def jacobian(self, q: NDArray) -> NDArray:
        return self.mat.copy()


class PlanarArmEndEffectorPosition(DifferentiableFunction):
    """
    Position of the tip of a planar serial chain.

    The chain is made of the joints listed in joint_indices (tangent indices),
    each joint angle being relative to the previous link.
    """

    def __init__(
        self,
        space: ConfigurationSpace,
        link_lengths: Sequence[float],
        joint_indices: Optional[Sequence[int]] = None,
        base: Optional[NDArray] = None,
        name: str = "end_effector_position",
    ):
        self.space = space
        self.link_lengths = np.asarray(link_lengths, dtype=np.float64)

        if joint_indices is None:
            joint_indices = list(range(len(self.link_lengths)))
        self.joint_indices = np.asarray(joint_indices, dtype=np.int64)

        assert len(self.joint_indices) == len(self.link_lengths)

        self.base = np.zeros(2) if base is None else np.asarray(base, dtype=np.float64)
        self.name = name

        self.output_size = 2
        self.tangent_size = space.tangent_size

    def _absolute_angles(self, q: NDArray) -> NDArray:
        return np.cumsum(self.space.coordinates(q)[self.joint_indices])

    def value(self, q: NDArray) -> NDArray:
        phi = self._absolute_angles(q)
        return self.base + np.array(
            [
                np.sum(self.link_lengths * np.cos(phi)),
                np.sum(self.link_lengths * np.sin(phi)),
            ]
        )

    def jacobian(self, q: NDArray) -> NDArray:
        phi = self._absolute_angles(q)

        # joint j moves every link from j onwards
        dx = np.cumsum((-self.link_lengths * np.sin(phi))[::-1])[::-1]
        dy = np.cumsum((self.link_lengths * np.cos(phi))[::-1])[::-1]

        J = np.zeros((2, self.tangent_size))
        J[0, self.joint_indices] = dx
        J[1, self.joint_indices] = dy
        return J


class DistanceToPoint(DifferentiableFunction):
    """Euclidean distance between the output of another function and a point."""

    def __init__(self, function: DifferentiableFunction, point: NDArray, name: str = "distance"):
        self.function = function
        self.point = np.asarray(point, dtype=np.float64)
        self.name = name

        assert len(self.point) == function.output_size

        self.output_size = 1
        self.tangent_size = function.tangent_size

    def value(self, q: NDArray) -> NDArray:
        return np.array([np.linalg.norm(self.function.value(q) - self.point)])

    def jacobian(self, q: NDArray) -> NDArray:
        diff = self.function.value(q) - self.point
        d = np.linalg.norm(diff)

        if d == 0.0:
            # the distance is not differentiable at the point itself
            return np.zeros((1, self.tangent_size))

        return (diff / d)[None, :] @ self.function.jacobian(q)


class SelectedOutputs(DifferentiableFunction):
    """Subset of the outputs of another function, e.g. one coordinate of a position."""

    def __init__(self, function: DifferentiableFunction, indices: Sequence[int], name: Optional[str] = None):
        self.function = function
        self.indices = np.asarray(indices, dtype=np.int64)
        self.name = name if name is not None else f"{function.name}{self.indices.tolist()}"

        assert len(self.indices) > 0
        assert np.all((self.indices >= 0) & (self.indices < function.output_size))

        self.output_size = len(self.indices)
        self.tangent_size = function.tangent_size

    def value(self, q: NDArray) -> NDArray:
        return self.function.value(q)[self.indices]

    def jacobian(self, q: NDArray) -> NDArray:
        return self.function.jacobian(q)[self.indices]


class SquaredNorm(DifferentiableFunction):
    """Squared norm of the coordinates of a subset of the joints."""

    def __init__(
        self,
        space: ConfigurationSpace,
        indices: Optional[Sequence[int]] = None,
        name: str = "squared_norm",
    ):
        self.space = space
        if indices is None:
            indices = list(range(space.tangent_size))
        self.indices = np.asarray(indices, dtype=np.int64)
        self.name = name

        self.output_size = 1
        self.tangent_size = space.tangent_size

    def value(self, q: NDArray) -> NDArray:
        x = self.space.coordinates(q)[self.indices]
        return np.array([x @ x])

    def jacobian(self, q: NDArray) -> NDArray:
        x = self.space.coordinates(q)
        J = np.zeros((1, self.tangent_size))
        J[0, self.indices] = 2 * x[self.indices]
        return J


class LockedJoint(DifferentiableFunction):
    """
    Explicit constraint fixing the coordinates of some joints.

    The locked tangent dimensions are removed from the free variables of the
    solver and set directly to the right hand side.
    """

    is_explicit = True

    def __init__(self, space: ConfigurationSpace, joint_indices: Sequence[int], name: str = "locked_joint"):
        self.space = space
        self.output_indices = np.asarray(joint_indices, dtype=np.int64)
        self.name = name

        self.output_size = len(self.output_indices)
        self.tangent_size = space.tangent_size

    def value(self, q: NDArray) -> NDArray:
        return self.space.coordinates(q)[self.output_indices]

    def jacobian(self, q: NDArray) -> NDArray:
        J = np.zeros((self.output_size, self.tangent_size))
        J[np.arange(self.output_size), self.output_indices] = 1.0
        return J


class NumericalConstraint:
    """
    A differentiable function together with a comparison type and a right hand side.

    Equality constraints can carry a right hand side function of a scalar path
    parameter, so that a single constraint describes a continuum of manifolds.

    Constraints are compared by identity: the same object can only be added once
    to a constraint stack, but two structurally equal objects are different members.
    """

    def __init__(
        self,
        function: DifferentiableFunction,
        comparison: ComparisonType = ComparisonType.EQUALITY,
        right_hand_side: Optional[NDArray] = None,
        right_hand_side_function: Optional[Callable[[float], NDArray]] = None,
        name: Optional[str] = None,
    ):
        self.function = function
        self.comparison = comparison

        if right_hand_side is None:
            right_hand_side = np.zeros(function.output_size)
        self.right_hand_side = np.asarray(right_hand_side, dtype=np.float64).reshape(-1)

        if len(self.right_hand_side) != function.output_size:
            raise ConfigurationError(
                f"Right hand side of size {len(self.right_hand_side)} does not match "
                f"the output size {function.output_size} of {function}"
            )

        if right_hand_side_function is not None and comparison != ComparisonType.EQUALITY:
            raise ConfigurationError(
                "Only equality constraints can have a parameterized right hand side"
            )
        self.right_hand_side_function = right_hand_side_function

        if function.is_explicit and comparison != ComparisonType.EQUALITY:
            raise ConfigurationError("Explicit constraints must be equalities")

        self.name = function.name if name is None else name

    def __repr__(self):
        return f"NumericalConstraint({self.name}, {self.comparison.value})"

    @property
    def output_size(self) -> int:
        return self.function.output_size

    @property
    def is_explicit(self) -> bool:
        return self.function.is_explicit

    @property
    def is_equality(self) -> bool:
        return self.comparison == ComparisonType.EQUALITY

    def error(self, value: NDArray, rhs: NDArray) -> Tuple[NDArray, NDArray]:
        """
        Signed error of a value with respect to the right hand side and the mask
        of the rows that are active (i.e. that contribute to the Newton step).
        Satisfied inequality rows have zero error and are inactive.
        """
        diff = value - rhs

        if self.comparison == ComparisonType.EQUALITY:
            return diff, np.ones(len(diff), dtype=bool)

        if self.comparison == ComparisonType.INFERIOR:
            active = diff > 0.0
        else:
            active = diff < 0.0

        return np.where(active, diff, 0.0), active

