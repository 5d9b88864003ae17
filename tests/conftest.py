import pytest

import numpy as np

from constrained_motion_planning.problems.configuration import ConfigurationSpace
from constrained_motion_planning.problems.config_projector import ConfigProjector
from constrained_motion_planning.problems.constraint_set import ConstraintSet
from constrained_motion_planning.problems.constraints import (
    NumericalConstraint,
    PlanarArmEndEffectorPosition,
    SquaredNorm,
)
from constrained_motion_planning.problems.parameters import ConfigProjectorConfig


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def plane():
    return ConfigurationSpace.euclidean(2)


@pytest.fixture
def arm():
    return ConfigurationSpace.planar_arm(2)


@pytest.fixture
def circle_constraints(plane):
    """Unit circle in the plane: |x|^2 = 1."""
    circle = NumericalConstraint(SquaredNorm(plane), right_hand_side=np.array([1.0]))
    projector = ConfigProjector(plane, "circle", ConfigProjectorConfig(1e-4, 30))
    projector.add(circle)
    return ConstraintSet(projector, "circle")


@pytest.fixture
def arm_end_effector(arm):
    return PlanarArmEndEffectorPosition(arm, [1.0, 0.8])
