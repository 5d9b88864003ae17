import pytest

import numpy as np

from constrained_motion_planning.problems.config_projector import ConfigProjector
from constrained_motion_planning.problems.constraint_set import ConstraintSet
from constrained_motion_planning.problems.constraints import (
    AffineFunction,
    NumericalConstraint,
    SelectedOutputs,
)
from constrained_motion_planning.problems.errors import ConfigurationError
from constrained_motion_planning.problems.parameters import ParameterStore
from constrained_motion_planning.planners.hermite import HermitePath
from constrained_motion_planning.planners.paths import (
    ExtractedPath,
    InterpolatedPath,
    PathVector,
    StraightPath,
)
from constrained_motion_planning.planners.recursive_hermite import RecursiveHermite
from constrained_motion_planning.planners.steering_methods import (
    HermiteSteeringMethod,
    StraightSteeringMethod,
)


def make_projector(space, constraints, m=10.0, beta=0.8, **kwargs):
    return RecursiveHermite(space.distance, HermiteSteeringMethod(space, constraints), m, beta, **kwargs)


def on_circle(angle):
    return np.array([np.cos(angle), np.sin(angle)])


def test_construction_errors(plane, circle_constraints):
    with pytest.raises(ConfigurationError):
        make_projector(plane, circle_constraints, beta=0.4)
    with pytest.raises(ConfigurationError):
        make_projector(plane, circle_constraints, beta=1.1)
    with pytest.raises(ConfigurationError):
        make_projector(plane, circle_constraints, m=0.0)
    with pytest.raises(ConfigurationError):
        RecursiveHermite(plane.distance, StraightSteeringMethod(plane, circle_constraints), 10.0, 0.8)

    make_projector(plane, circle_constraints, beta=0.5)
    make_projector(plane, circle_constraints, beta=1.0)


def test_from_parameters(plane, circle_constraints):
    parameters = ParameterStore({"path_projection": {"recursive_hermite": {"m": 5.0, "beta": 0.7}}})
    projector = RecursiveHermite.from_parameters(
        plane.distance, HermiteSteeringMethod(plane, circle_constraints), parameters
    )

    assert projector.m == 5.0
    assert projector.beta == 0.7
    assert projector.max_depth == 64


def test_path_without_constraints_is_unchanged(plane):
    p = StraightPath(plane, np.zeros(2), np.ones(2))
    proj, ok = make_projector(plane, None).apply(p)

    assert ok
    assert proj is p


@pytest.mark.parametrize("end_angle", [0.5, 1.0, -0.8])
def test_projection_on_circle(plane, circle_constraints, end_angle):
    q0 = on_circle(0.0)
    q1 = on_circle(end_angle)
    p = StraightPath(plane, q0, q1, constraints=circle_constraints)

    projector = make_projector(plane, circle_constraints)
    proj, ok = projector.apply(p)

    assert ok
    assert isinstance(proj, PathVector)
    assert proj.number_paths() > 1

    # no drift at the boundaries of the path
    assert np.array_equal(proj.initial(), q0)
    assert np.array_equal(proj.end(), q1)

    thr = 2 * circle_constraints.config_projector.error_threshold / projector.m
    for i in range(proj.number_paths()):
        segment = proj.path_at_rank(i)
        assert isinstance(segment, HermitePath)
        assert segment.hermite_length < thr
        if i > 0:
            assert np.array_equal(segment.initial(), proj.path_at_rank(i - 1).end())

    for t in np.linspace(*proj.time_range, 50):
        assert abs(np.linalg.norm(proj.compute(t)) - 1) < 1e-3


def test_segments_use_the_constraints_of_the_path(plane, circle_constraints):
    steering_method = HermiteSteeringMethod(plane)
    projector = RecursiveHermite(plane.distance, steering_method, 10.0, 0.8)

    p = StraightPath(plane, on_circle(0.0), on_circle(1.0), constraints=circle_constraints)
    proj, ok = projector.apply(p)

    assert ok
    assert steering_method.constraints is None
    for t in np.linspace(*proj.time_range, 51):
        assert abs(np.linalg.norm(proj.compute(t)) - 1) < 1e-3


def test_projection_on_another_leaf(plane, circle_constraints):
    # the path lies on the circle of radius 2, the steering method on the unit circle
    leaf = circle_constraints.copy()
    leaf.config_projector.right_hand_side_from_config(2 * on_circle(0.0))

    q0 = 2 * on_circle(0.0)
    q1 = 2 * on_circle(1.0)
    p = StraightPath(plane, q0, q1, constraints=leaf)

    proj, ok = make_projector(plane, circle_constraints).apply(p)

    assert ok
    assert np.array_equal(proj.initial(), q0)
    assert np.array_equal(proj.end(), q1)
    for t in np.linspace(*proj.time_range, 51):
        assert abs(np.linalg.norm(proj.compute(t)) - 2) < 1e-3


def test_projection_of_planar_arm_path(arm, arm_end_effector):
    # end effector on the vertical line x = 1.2
    constraint = NumericalConstraint(
        SelectedOutputs(arm_end_effector, [0]), right_hand_side=np.array([1.2])
    )
    config_projector = ConfigProjector(arm, "vertical line")
    config_projector.add(constraint)
    constraints = ConstraintSet(config_projector, "vertical line")

    q0, ok0 = constraints.apply(arm.from_coordinates(np.array([0.3, -1.5])))
    q1, ok1 = constraints.apply(arm.from_coordinates(np.array([1.0, -1.0])))
    assert ok0 and ok1

    p = StraightPath(arm, q0, q1, constraints=constraints)
    proj, ok = make_projector(arm, constraints).apply(p)

    assert ok
    assert np.array_equal(proj.initial(), q0)
    assert np.array_equal(proj.end(), q1)

    for t in np.linspace(*proj.time_range, 30):
        assert abs(arm_end_effector.value(proj.compute(t))[0] - 1.2) < 1e-3


def test_already_accepted_path_is_returned_as_is(plane):
    # straight line y = x, which is its own projection
    line = NumericalConstraint(AffineFunction(plane, np.array([[1.0, -1.0]])))
    config_projector = ConfigProjector(plane, "diagonal")
    config_projector.add(line)
    constraints = ConstraintSet(config_projector)

    p = HermitePath(plane, np.array([0.0, 0.0]), np.array([1.0, 1.0]), constraints)
    proj, ok = make_projector(plane, constraints).apply(p)

    assert ok
    assert proj.number_paths() == 1
    assert proj.path_at_rank(0) is p
    assert p.hermite_length == pytest.approx(0.0)


def test_infeasible_end_fails_immediately(plane, circle_constraints):
    p = StraightPath(plane, on_circle(0.0), np.array([0.0, 2.0]), constraints=circle_constraints)
    projector = make_projector(plane, circle_constraints)

    proj, ok = projector.project(p)
    assert not ok
    assert proj is None

    proj, ok = projector.apply(p)
    assert not ok
    assert proj.length == 0.0
    assert np.array_equal(proj.initial(), p.initial())


def test_midpoint_projection_failure(plane, circle_constraints):
    # the straight line between opposite points goes through the center,
    # where the constraint jacobian vanishes
    q0 = on_circle(0.0)
    q1 = np.array([-1.0, 0.0])
    p = StraightPath(plane, q0, q1, constraints=circle_constraints)

    proj, ok = make_projector(plane, circle_constraints).apply(p)

    assert not ok
    assert isinstance(proj, ExtractedPath)
    assert proj.length == 0.0
    assert np.array_equal(proj.initial(), q0)


def test_insufficient_progress_fails(plane, circle_constraints, monkeypatch):
    # a length oracle that never decreases
    def constant_length(self):
        self._hermite_length = 1.0
        return 1.0

    monkeypatch.setattr(HermitePath, "compute_hermite_length", constant_length)

    p = StraightPath(plane, on_circle(0.0), on_circle(0.5), constraints=circle_constraints)
    proj, ok = make_projector(plane, circle_constraints, beta=0.9).apply(p)

    assert not ok
    assert proj.length == 0.0


def test_insufficient_progress_on_nearly_opposite_points(plane, circle_constraints):
    # the chord passes close to the center: the middle configuration is
    # projected a quarter turn away and both halves keep about 2/3 of the length
    p = StraightPath(plane, on_circle(0.0), on_circle(3.0), constraints=circle_constraints)
    projector = make_projector(plane, circle_constraints, beta=0.55)

    first = projector.steer(p.initial(), p.end(), p.time_range)
    assert first.compute_hermite_length() > 2 * circle_constraints.config_projector.error_threshold / projector.m

    proj, ok = projector.apply(p)

    assert not ok
    assert proj.length == 0.0
    assert np.array_equal(proj.initial(), p.initial())


def test_recursion_depth_is_capped(plane, circle_constraints, monkeypatch):
    # a length oracle that decreases too slowly to ever accept a curve
    def slowly_decreasing_length(self):
        self._hermite_length = 1.0 + self.length
        return self._hermite_length

    monkeypatch.setattr(HermitePath, "compute_hermite_length", slowly_decreasing_length)

    p = StraightPath(plane, on_circle(0.0), on_circle(0.5), constraints=circle_constraints)
    proj, ok = make_projector(plane, circle_constraints, beta=1.0, max_depth=5).apply(p)

    assert not ok
    assert proj.length == 0.0


def test_interpolated_path(plane, circle_constraints):
    waypoints = [on_circle(a) for a in [0.0, 0.4, 0.9]]
    p = InterpolatedPath(plane, waypoints, constraints=circle_constraints)

    proj, ok = make_projector(plane, circle_constraints).apply(p)

    assert ok
    assert np.array_equal(proj.initial(), waypoints[0])
    assert np.array_equal(proj.end(), waypoints[-1])

    # every waypoint is the boundary of a segment
    starts = [proj.path_at_rank(i).initial() for i in range(proj.number_paths())]
    assert any(np.array_equal(s, waypoints[1]) for s in starts)


def test_interpolation_times(plane, circle_constraints):
    waypoints = [on_circle(a) for a in [0.0, 0.4, 0.9]]
    p = InterpolatedPath(plane, waypoints, constraints=circle_constraints)

    projector = make_projector(plane, circle_constraints, interpolation_times=[0.0, 1.0, 2.0])
    proj, ok = projector.apply(p)

    assert ok
    assert proj.length == pytest.approx(2.0)

    projector = make_projector(plane, circle_constraints, interpolation_times=[0.0, 1.0])
    with pytest.raises(ValueError):
        projector.apply(p)


def test_path_vector_keeps_succeeded_prefix(plane, circle_constraints):
    a = StraightPath(plane, on_circle(0.0), on_circle(0.5), constraints=circle_constraints)
    b = StraightPath(plane, on_circle(0.5), on_circle(0.5 + np.pi), constraints=circle_constraints)
    pv = PathVector.from_paths(plane, [a, b])

    proj, ok = make_projector(plane, circle_constraints).apply(pv)

    assert not ok
    assert isinstance(proj, PathVector)
    assert np.array_equal(proj.initial(), a.initial())
    assert np.allclose(proj.end(), a.end())
