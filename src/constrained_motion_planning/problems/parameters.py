import os
import yaml
import logging

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ConfigurationError
from .solver import LineSearchType

logger = logging.getLogger(__name__)


DEFAULT_PARAMETERS: Dict[str, Any] = {
    "config_projector.error_threshold": 1e-4,
    "config_projector.max_iterations": 20,
    "config_projector.line_search_type": "backtracking",
    "path_projection.recursive_hermite.m": 10.0,
    "path_projection.recursive_hermite.beta": 0.9,
    "path_projection.recursive_hermite.max_depth": 64,
    "path_validation.resolution": 0.05,
}


def flatten_parameters(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Turns nested dictionaries into dotted keys: {a: {b: 1}} -> {"a.b": 1}."""
    flat = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_parameters(value, name + "."))
        else:
            flat[name] = value
    return flat


class ParameterStore:
    """
    Named parameters with defaults.
    Parameters can be read from nested yaml files, e.g.

        config_projector:
          error_threshold: 1e-4
        path_projection:
          recursive_hermite:
            beta: 0.8
    """

    def __init__(self, parameters: Optional[Dict[str, Any]] = None):
        self._parameters = dict(DEFAULT_PARAMETERS)
        if parameters is not None:
            self._parameters.update(flatten_parameters(parameters))

    @classmethod
    def from_yaml(cls, filename: str) -> "ParameterStore":
        if not os.path.isfile(filename):
            raise ConfigurationError(f"Parameter file {filename} does not exist")

        with open(filename, "r") as file:
            data = yaml.safe_load(file)

        logger.info(f"Loaded parameters from {filename}")
        return cls(data if data is not None else {})

    def __contains__(self, name: str) -> bool:
        return name in self._parameters

    def __repr__(self):
        return f"ParameterStore({self._parameters})"

    def get(self, name: str) -> Any:
        if name not in self._parameters:
            raise ConfigurationError(f"Unknown parameter {name}")
        return self._parameters[name]

    def set(self, name: str, value: Any):
        self._parameters[name] = value

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._parameters)


def parse_line_search_type(value: Any) -> LineSearchType:
    if isinstance(value, LineSearchType):
        return value

    # accept both "error_norm_based" and "ErrorNormBased"
    name = str(value)
    normalized = "".join(
        "_" + ch.lower() if ch.isupper() and i > 0 else ch.lower() for i, ch in enumerate(name)
    )
    for candidate in (name.lower(), normalized):
        try:
            return LineSearchType(candidate)
        except ValueError:
            continue

    raise ConfigurationError(f"Unknown line search type {value}")


@dataclass
class ConfigProjectorConfig:
    error_threshold: float = 1e-4
    max_iterations: int = 20
    line_search_type: LineSearchType = LineSearchType.BACKTRACKING

    @classmethod
    def from_parameters(cls, parameters: ParameterStore) -> "ConfigProjectorConfig":
        return cls(
            error_threshold=float(parameters.get("config_projector.error_threshold")),
            max_iterations=int(parameters.get("config_projector.max_iterations")),
            line_search_type=parse_line_search_type(
                parameters.get("config_projector.line_search_type")
            ),
        )


@dataclass
class RecursiveHermiteConfig:
    # stiffness scale relating the constraint residual to the geometric deviation
    m: float = 10.0
    beta: float = 0.9
    max_depth: Optional[int] = 64

    @classmethod
    def from_parameters(cls, parameters: ParameterStore) -> "RecursiveHermiteConfig":
        max_depth = parameters.get("path_projection.recursive_hermite.max_depth")
        return cls(
            m=float(parameters.get("path_projection.recursive_hermite.m")),
            beta=float(parameters.get("path_projection.recursive_hermite.beta")),
            max_depth=None if max_depth is None else int(max_depth),
        )
