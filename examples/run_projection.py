import argparse

import numpy as np
from matplotlib import pyplot as plt

import logging

from constrained_motion_planning.problems import (
    ConfigProjector,
    ConfigurationSpace,
    ConstraintSet,
    NumericalConstraint,
    ParameterStore,
    PlanarArmEndEffectorPosition,
    SelectedOutputs,
)
from constrained_motion_planning.problems.util import sample_path
from constrained_motion_planning.planners import (
    ConstraintPathValidation,
    HermiteSteeringMethod,
    RecursiveHermite,
    StraightPath,
)

logger = logging.getLogger(__name__)


def sample_feasible_configuration(constraints, space, rng, max_attempts=100):
    for _ in range(max_attempts):
        q, ok = constraints.apply(space.random_configuration(rng))
        if ok:
            return q

    raise RuntimeError(f"Could not find a feasible configuration in {max_attempts} attempts")


def plot_arm(ax, end_effector, space, q, color, alpha=1.0):
    phi = np.cumsum(space.coordinates(q))
    pts = [np.zeros(2)]
    for length, angle in zip(end_effector.link_lengths, phi):
        pts.append(pts[-1] + length * np.array([np.cos(angle), np.sin(angle)]))
    pts = np.array(pts)

    ax.plot(pts[:, 0], pts[:, 1], "o-", color=color, alpha=alpha)


def display(space, end_effector, path, projection, target):
    fig, ax = plt.subplots()

    straight = np.array([end_effector.value(q) for q in sample_path(path, 0.01)])
    projected = np.array([end_effector.value(q) for q in sample_path(projection, 0.01)])

    ax.axvline(target, color="gray", linestyle="--", label="constraint")
    ax.plot(straight[:, 0], straight[:, 1], color="tab:red", label="straight path")
    ax.plot(projected[:, 0], projected[:, 1], color="tab:blue", label="projected path")

    plot_arm(ax, end_effector, space, path.initial(), "black")
    plot_arm(ax, end_effector, space, path.end(), "black", alpha=0.5)

    ax.set_aspect("equal")
    ax.legend()
    plt.show()


def main():
    parser = argparse.ArgumentParser(description="Projects a planar arm path onto an end effector constraint")
    parser.add_argument("config", nargs="?", default="", help="yaml parameter file")
    parser.add_argument("--num_links", type=int, default=3, help="Number of links of the arm")
    parser.add_argument("--target", type=float, default=1.2, help="x coordinate of the end effector")
    parser.add_argument("--seed", type=int, default=1, help="Seed")
    parser.add_argument("--display", action="store_true", help="Plot the paths")
    parser.add_argument("--verbose", action="store_true", help="Debug output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parameters = ParameterStore.from_yaml(args.config) if args.config else ParameterStore()
    rng = np.random.default_rng(args.seed)

    space = ConfigurationSpace.planar_arm(args.num_links)
    end_effector = PlanarArmEndEffectorPosition(space, np.linspace(1.0, 0.5, args.num_links))

    config_projector = ConfigProjector.from_parameters(space, parameters, "end effector x")
    config_projector.add(
        NumericalConstraint(
            SelectedOutputs(end_effector, [0], "end_effector_x"), right_hand_side=np.array([args.target])
        )
    )
    constraints = ConstraintSet(config_projector, "end effector x")

    q0 = sample_feasible_configuration(constraints, space, rng)
    q1 = sample_feasible_configuration(constraints, space, rng)

    path = StraightPath(space, q0, q1, constraints=constraints)
    projector = RecursiveHermite.from_parameters(
        space.distance, HermiteSteeringMethod(space, constraints), parameters
    )

    projection, success = projector.apply(path)
    logger.info(f"Projection success: {success}, length {projection.length:.3f} of {path.length:.3f}")

    validation = ConstraintPathValidation(parameters.get("path_validation.resolution"))
    for name, p in [("straight", path), ("projected", projection)]:
        valid, _, report = validation.validate(p)
        if valid:
            logger.info(f"{name} path satisfies the constraint")
        else:
            logger.info(f"{name} path violates the constraint at {report.parameter:.3f}")

    logger.info(constraints.config_projector.statistics())

    if args.display:
        display(space, end_effector, path, projection, args.target)


if __name__ == "__main__":
    main()
