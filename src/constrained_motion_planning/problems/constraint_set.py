import numpy as np

from typing import Optional, Tuple
from numpy.typing import NDArray

from .config_projector import ConfigProjector


class ConstraintSet:
    """
    The constraints attached to a path.

    A constraint set owns its config projector: the projector is copied when the
    set is created and when the set is copied, so that two paths never share
    right hand side state.
    """

    def __init__(self, config_projector: Optional[ConfigProjector] = None, name: str = ""):
        self.name = name
        self._config_projector = None if config_projector is None else config_projector.copy()

    def copy(self) -> "ConstraintSet":
        return ConstraintSet(self._config_projector, self.name)

    def __repr__(self):
        return f"ConstraintSet({self.name}, {self._config_projector})"

    @property
    def config_projector(self) -> Optional[ConfigProjector]:
        return self._config_projector

    def apply(self, q: NDArray) -> Tuple[NDArray, bool]:
        if self._config_projector is None:
            return np.array(q, dtype=np.float64), True
        return self._config_projector.apply(q)

    def right_hand_side_at(self, s: float):
        if self._config_projector is not None:
            self._config_projector.right_hand_side_at(s)

    def is_satisfied(self, q: NDArray, error_threshold: Optional[float] = None) -> bool:
        if self._config_projector is None:
            return True
        return self._config_projector.is_satisfied(q, error_threshold)

    def is_satisfied_with_error(self, q: NDArray) -> Tuple[bool, NDArray]:
        if self._config_projector is None:
            return True, np.zeros(0)
        return self._config_projector.is_satisfied_with_error(q)
