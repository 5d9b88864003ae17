import pytest

import numpy as np

from constrained_motion_planning.problems.configuration import ConfigurationSpace
from constrained_motion_planning.problems.constraint_stack import ConstraintStack
from constrained_motion_planning.problems.constraints import (
    AffineFunction,
    LockedJoint,
    NumericalConstraint,
    SquaredNorm,
)


def make_stack():
    space = ConfigurationSpace.euclidean(4)
    stack = ConstraintStack(space)

    sum_xy = NumericalConstraint(AffineFunction(space, np.array([[1.0, 1.0, 0.0, 0.0]])))
    norm = NumericalConstraint(SquaredNorm(space, [2, 3]), right_hand_side=np.array([1.0]))
    lock = NumericalConstraint(LockedJoint(space, [1]), right_hand_side=np.array([0.5]))

    assert stack.add(sum_xy)
    assert stack.add(norm, priority=1)
    assert stack.add(lock)

    return stack, sum_xy, norm, lock


def test_add_rejects_identical_constraint():
    stack, sum_xy, norm, lock = make_stack()

    assert not stack.add(sum_xy)
    assert not stack.add(sum_xy, priority=3)
    assert not stack.add(lock)
    assert len(stack) == 3

    # structurally equal, but a different object
    other = NumericalConstraint(sum_xy.function)
    assert not stack.contains(other)
    assert stack.add(other)


def test_explicit_constraints_have_their_own_tier():
    stack, sum_xy, norm, lock = make_stack()

    assert len(stack.levels) == 2
    assert [e.constraint for e in stack.explicit] == [lock]
    assert stack.numerical_constraints() == [sum_xy, norm, lock]


def test_overlapping_explicit_constraint_is_rejected():
    stack, _, _, _ = make_stack()
    other_lock = NumericalConstraint(LockedJoint(stack.space, [1, 2]))

    assert not stack.add(other_lock)
    assert not stack.contains(other_lock)


def test_dimensions():
    stack, _, _, _ = make_stack()

    assert stack.number_free_variables() == 3
    assert stack.implicit_dimension() == 2
    assert stack.dimension() == 3


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_compress_uncompress_vector(seed):
    stack, _, _, _ = make_stack()
    rng = np.random.default_rng(seed)

    small = rng.normal(size=stack.number_free_variables())
    assert np.array_equal(stack.compress_vector(stack.uncompress_vector(small)), small)

    normal = rng.normal(size=stack.space.tangent_size)
    normal[stack.locked_dofs] = 0.0
    assert np.array_equal(stack.uncompress_vector(stack.compress_vector(normal)), normal)


def test_compress_uncompress_matrix():
    stack, _, _, _ = make_stack()
    n = stack.number_free_variables()

    small = np.arange(n * n, dtype=float).reshape(n, n)
    assert np.array_equal(stack.compress_matrix(stack.uncompress_matrix(small)), small)

    cols = np.ones((2, n))
    normal = stack.uncompress_matrix(cols, rows=False)
    assert normal.shape == (2, 4)
    assert np.all(normal[:, 1] == 0)
    assert np.array_equal(stack.compress_matrix(normal, rows=False), cols)


def test_right_hand_side_is_owned_by_the_stack():
    stack, sum_xy, norm, lock = make_stack()

    assert np.allclose(stack.right_hand_side(), [0.0, 1.0, 0.5])

    other = stack.copy()
    other.set_right_hand_side(np.array([2.0, 3.0, 4.0]))

    assert np.allclose(other.right_hand_side(), [2.0, 3.0, 4.0])
    assert np.allclose(stack.right_hand_side(), [0.0, 1.0, 0.5])
    assert np.allclose(sum_xy.right_hand_side, [0.0])

    # the copy shares the constraint objects
    assert other.contains(sum_xy)
    assert other.contains(lock)


def test_optional_level():
    stack, _, _, _ = make_stack()

    assert len(stack.required_levels()) == 2
    stack.last_is_optional = True
    assert len(stack.required_levels()) == 1
    assert stack.is_optional_level(1)
    assert not stack.is_optional_level(0)
