import pytest

import numpy as np

from constrained_motion_planning.problems.configuration import ConfigurationSpace
from constrained_motion_planning.problems.config_projector import ConfigProjector
from constrained_motion_planning.problems.constraints import (
    AffineFunction,
    ComparisonType,
    LockedJoint,
    NumericalConstraint,
    PlanarArmEndEffectorPosition,
    SquaredNorm,
)
from constrained_motion_planning.problems.parameters import ConfigProjectorConfig
from constrained_motion_planning.problems.solver import (
    LineSearchType,
    SolverStatus,
    default_step_sequence,
    kernel_projector,
    pseudo_inverse,
)


def test_pseudo_inverse_rank_deficient():
    J = np.array([[1.0, 2.0, 3.0], [2.0, 4.0, 6.0]])
    pinv, s_min, rank = pseudo_inverse(J)

    assert rank == 1
    assert s_min > 0
    assert np.allclose(pinv, np.linalg.pinv(J))


def test_pseudo_inverse_zero_matrix():
    pinv, s_min, rank = pseudo_inverse(np.zeros((2, 3)))
    assert rank == 0
    assert pinv.shape == (3, 2)
    assert np.all(pinv == 0)


def test_kernel_projector():
    J = np.array([[1.0, 1.0, 0.0]])
    P = kernel_projector(J)

    assert np.allclose(J @ P, 0)
    assert np.allclose(P @ P, P)
    assert np.allclose(P @ np.array([0.0, 0.0, 1.0]), [0.0, 0.0, 1.0])


def test_default_step_sequence():
    seq = default_step_sequence()

    assert len(seq) == 13
    assert seq[0] == pytest.approx(0.2)
    assert seq[1] == pytest.approx(1 - 0.8 * 0.8)
    assert seq[-1] == 1.0
    assert all(a < b for a, b in zip(seq[:-1], seq[1:]))


@pytest.mark.parametrize("line_search_type", list(LineSearchType))
def test_circle_projection_with_every_line_search(line_search_type):
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(plane, "circle", ConfigProjectorConfig(1e-6, 50, line_search_type))
    projector.add(NumericalConstraint(SquaredNorm(plane), right_hand_side=np.array([1.0])))

    q, ok = projector.apply(np.array([2.0, 0.5]))

    assert ok
    assert np.linalg.norm(q) == pytest.approx(1.0, abs=1e-5)
    assert projector.residual_error < 1e-6


def planar_arm_solution(target, l1=1.0, l2=0.8):
    d2 = target @ target
    theta2 = np.arccos((d2 - l1**2 - l2**2) / (2 * l1 * l2))
    theta1 = np.arctan2(target[1], target[0]) - np.arctan2(
        l2 * np.sin(theta2), l1 + l2 * np.cos(theta2)
    )
    return np.array([theta1, theta2])


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_planar_arm_end_effector_projection(seed):
    arm = ConfigurationSpace.planar_arm(2)
    ee = PlanarArmEndEffectorPosition(arm, [1.0, 0.8])
    target = np.array([1.2, 0.5])

    solution = planar_arm_solution(target)
    assert np.allclose(ee.value(arm.from_coordinates(solution)), target)

    constraint = NumericalConstraint(ee, right_hand_side=target)
    projector = ConfigProjector(arm, "arm", ConfigProjectorConfig(1e-4, 30))
    assert projector.add(constraint)
    assert not projector.add(constraint)
    assert projector.dimension() == 2

    rng = np.random.default_rng(seed)
    start = arm.from_coordinates(solution + rng.uniform(-0.5, 0.5, 2))
    assert not projector.is_satisfied(start)

    q, ok = projector.apply(start)

    assert ok
    assert np.linalg.norm(ee.value(q) - target) < 1e-4
    assert projector.is_satisfied(q)


def test_priority_levels():
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(plane, "levels", ConfigProjectorConfig(1e-8, 20))

    # x + y = 1, then x - y = 0 in the remaining freedom
    projector.add(NumericalConstraint(AffineFunction(plane, np.array([[1.0, 1.0]])), right_hand_side=[1.0]))
    projector.add(NumericalConstraint(AffineFunction(plane, np.array([[1.0, -1.0]]))), priority=1)

    q, ok = projector.apply(np.array([3.0, -2.0]))

    assert ok
    assert np.allclose(q, [0.5, 0.5])


def test_conflicting_optional_level_does_not_fail():
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(plane, "optional", ConfigProjectorConfig(1e-8, 20))

    projector.add(NumericalConstraint(AffineFunction(plane, np.array([[1.0, 0.0]])), right_hand_side=[1.0]))
    projector.add(NumericalConstraint(AffineFunction(plane, np.array([[1.0, 0.0]])), right_hand_side=[2.0]), priority=1)

    _, ok = projector.apply(np.array([0.0, 0.0]))
    assert not ok

    projector.last_is_optional = True
    q, ok = projector.apply(np.array([0.0, 0.0]))
    assert ok
    assert q[0] == pytest.approx(1.0)

    statistics = projector.statistics()
    assert statistics.num_success == 1
    assert statistics.num_failures == 1


def test_degenerate_step():
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(plane, "circle")
    projector.add(NumericalConstraint(SquaredNorm(plane), right_hand_side=np.array([1.0])))

    # the jacobian vanishes at the origin
    q, ok = projector.apply(np.zeros(2))

    assert not ok
    assert np.array_equal(q, np.zeros(2))
    assert projector.statistics().failures[SolverStatus.DEGENERATE_STEP] == 1


def test_max_iterations_reached():
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(
        plane, "circle", ConfigProjectorConfig(1e-12, 1, LineSearchType.CONSTANT)
    )
    projector.add(NumericalConstraint(SquaredNorm(plane), right_hand_side=np.array([1.0])))

    _, ok = projector.apply(np.array([3.0, 4.0]))

    assert not ok
    assert projector.statistics().failures[SolverStatus.MAX_ITERATION_REACHED] == 1


def test_locked_joint_is_set_explicitly():
    space = ConfigurationSpace.euclidean(3)
    projector = ConfigProjector(space, "locked")
    projector.add(NumericalConstraint(SquaredNorm(space, [0, 1]), right_hand_side=np.array([1.0])))
    projector.add(NumericalConstraint(LockedJoint(space, [2]), right_hand_side=np.array([0.5])))

    assert projector.number_free_variables() == 2
    assert projector.dimension() == 2

    q, ok = projector.apply(np.array([2.0, 1.0, -3.0]))

    assert ok
    assert q[2] == 0.5
    assert np.linalg.norm(q[:2]) == pytest.approx(1.0, abs=1e-4)


def test_inequality_constraint():
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(plane, "halfplane", ConfigProjectorConfig(1e-6, 20))
    projector.add(
        NumericalConstraint(
            AffineFunction(plane, np.array([[1.0, 0.0]])),
            ComparisonType.INFERIOR,
            np.array([0.5]),
        )
    )

    q, ok = projector.apply(np.array([2.0, 1.0]))
    assert ok
    assert q[0] == pytest.approx(0.5, abs=1e-6)
    assert q[1] == pytest.approx(1.0)

    inside = np.array([0.0, 1.0])
    q, ok = projector.apply(inside)
    assert ok
    assert np.array_equal(q, inside)


def test_one_step_decreases_error():
    plane = ConfigurationSpace.euclidean(2)
    projector = ConfigProjector(plane, "circle")
    projector.add(NumericalConstraint(SquaredNorm(plane), right_hand_side=np.array([1.0])))

    q0 = np.array([2.0, 0.0])
    q1, ok = projector.one_step(q0)

    assert ok
    assert abs(q1 @ q1 - 1) < abs(q0 @ q0 - 1)


def test_lower_level_spanned_by_higher_level():
    arm = ConfigurationSpace.planar_arm(2)
    ee = PlanarArmEndEffectorPosition(arm, [1.0, 0.8])
    solution = np.array([0.4, 0.9])

    projector = ConfigProjector(arm, "redundant", ConfigProjectorConfig(1e-6, 30))
    projector.add(
        NumericalConstraint(ee, right_hand_side=ee.value(arm.from_coordinates(solution)))
    )
    # joint 0 is already fixed by the end effector position, the level adds no direction
    projector.add(
        NumericalConstraint(AffineFunction(arm, np.array([[1.0, 0.0]])), right_hand_side=[0.4]),
        priority=1,
    )

    q, ok = projector.apply(arm.from_coordinates([0.2, 0.5]))

    assert ok
    assert np.allclose(arm.coordinates(q), solution, atol=1e-5)
    assert projector.sigma > np.sqrt(np.finfo(float).eps)


def test_pseudo_inverse_absolute_tolerance():
    J = np.array([[1e-15, 0.0], [0.0, 2e-16]])

    _, _, rank = pseudo_inverse(J)
    assert rank == 2

    pinv, s_min, rank = pseudo_inverse(J, atol=1e-8)
    assert rank == 0
    assert s_min == 0.0
    assert np.all(pinv == 0)
