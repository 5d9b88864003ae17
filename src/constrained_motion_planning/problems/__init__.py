from .configuration import ConfigurationSpace, JointType
from .constraints import (
    AffineFunction,
    ComparisonType,
    DifferentiableFunction,
    DistanceToPoint,
    LockedJoint,
    NumericalConstraint,
    PlanarArmEndEffectorPosition,
    SelectedOutputs,
    SquaredNorm,
)
from .constraint_stack import ConstraintStack
from .solver import HierarchicalIterativeSolver, LineSearchType, SolverStatus
from .config_projector import ConfigProjector
from .constraint_set import ConstraintSet
from .parameters import ConfigProjectorConfig, ParameterStore, RecursiveHermiteConfig
from .errors import ConfigurationError, ProjectionError

__all__ = [
    "ConfigurationSpace",
    "JointType",
    "AffineFunction",
    "ComparisonType",
    "DifferentiableFunction",
    "DistanceToPoint",
    "LockedJoint",
    "NumericalConstraint",
    "PlanarArmEndEffectorPosition",
    "SelectedOutputs",
    "SquaredNorm",
    "ConstraintStack",
    "HierarchicalIterativeSolver",
    "LineSearchType",
    "SolverStatus",
    "ConfigProjector",
    "ConstraintSet",
    "ConfigProjectorConfig",
    "ParameterStore",
    "RecursiveHermiteConfig",
    "ConfigurationError",
    "ProjectionError",
]
