from .paths import ExtractedPath, InterpolatedPath, Path, PathVector, StraightPath
from .hermite import HermitePath
from .steering_methods import HermiteSteeringMethod, SteeringMethod, StraightSteeringMethod
from .path_projector import PathProjector
from .recursive_hermite import RecursiveHermite
from .path_validation import ConstraintPathValidation, PathValidationReport

__all__ = [
    "ExtractedPath",
    "InterpolatedPath",
    "Path",
    "PathVector",
    "StraightPath",
    "HermitePath",
    "HermiteSteeringMethod",
    "SteeringMethod",
    "StraightSteeringMethod",
    "PathProjector",
    "RecursiveHermite",
    "ConstraintPathValidation",
    "PathValidationReport",
]
