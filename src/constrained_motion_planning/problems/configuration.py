import numpy as np

from enum import Enum
from typing import List, Optional, Sequence
from numpy.typing import NDArray
import numba

# TODO: support SO(3) joints once a spatial chain model exists


class JointType(Enum):
    TRANSLATION = "translation"
    SO2 = "so2"


@numba.jit(
    numba.float64[:](numba.float64[:, :], numba.float64[:, :]),
    nopython=True,
    fastmath=True,
    boundscheck=False,
)
def compute_so2_difference(cs1: NDArray, cs0: NDArray) -> NDArray:
    """Angle of the rotation taking each (cos, sin) row of cs0 to cs1."""
    num_joints = cs1.shape[0]
    angles = np.empty(num_joints, dtype=np.float64)

    for i in range(num_joints):
        c = cs1[i, 0] * cs0[i, 0] + cs1[i, 1] * cs0[i, 1]
        s = cs1[i, 1] * cs0[i, 0] - cs1[i, 0] * cs0[i, 1]
        angles[i] = np.arctan2(s, c)

    return angles


@numba.jit(
    numba.float64[:, :](numba.float64[:, :], numba.float64[:]),
    nopython=True,
    fastmath=True,
    boundscheck=False,
)
def compute_so2_integrate(cs: NDArray, angles: NDArray) -> NDArray:
    """Rotates each (cos, sin) row by the given angle and renormalizes it."""
    num_joints = cs.shape[0]
    res = np.empty((num_joints, 2), dtype=np.float64)

    for i in range(num_joints):
        ca = np.cos(angles[i])
        sa = np.sin(angles[i])
        c = cs[i, 0] * ca - cs[i, 1] * sa
        s = cs[i, 1] * ca + cs[i, 0] * sa
        n = np.sqrt(c * c + s * s)
        res[i, 0] = c / n
        res[i, 1] = s / n

    return res


class ConfigurationSpace:
    """
    The configuration manifold of a robot made of one-dof joints.

    Translation joints are stored as a single real coordinate, SO2 joints as the
    unit complex number (cos, sin). Every joint contributes exactly one tangent
    dimension, which means that the configuration size can be larger than the
    tangent size.

    Configurations are flat float64 arrays; all operations return new arrays.
    """

    def __init__(
        self,
        joint_types: Sequence[JointType],
        joint_names: Optional[List[str]] = None,
        lower_bounds: Optional[NDArray] = None,
        upper_bounds: Optional[NDArray] = None,
    ):
        self.joint_types = list(joint_types)

        if joint_names is None:
            joint_names = [f"joint_{i}" for i in range(len(self.joint_types))]

        assert len(joint_names) == len(self.joint_types)
        self.joint_names = list(joint_names)

        r_cfg, r_tan, so2_cfg, so2_tan = [], [], [], []
        cnt = 0
        for i, jt in enumerate(self.joint_types):
            if jt == JointType.TRANSLATION:
                r_cfg.append(cnt)
                r_tan.append(i)
                cnt += 1
            elif jt == JointType.SO2:
                so2_cfg.append((cnt, cnt + 1))
                so2_tan.append(i)
                cnt += 2
            else:
                raise ValueError(f"Unknown joint type {jt}")

        self.config_size = cnt
        self.tangent_size = len(self.joint_types)

        self._r_cfg = np.array(r_cfg, dtype=np.int64)
        self._r_tan = np.array(r_tan, dtype=np.int64)
        self._so2_cfg = np.array(so2_cfg, dtype=np.int64).reshape(-1, 2)
        self._so2_tan = np.array(so2_tan, dtype=np.int64)

        # bounds are only meaningful for translation joints
        if lower_bounds is None:
            lower_bounds = -np.ones(self.tangent_size)
        if upper_bounds is None:
            upper_bounds = np.ones(self.tangent_size)

        self.lower_bounds = np.asarray(lower_bounds, dtype=np.float64)
        self.upper_bounds = np.asarray(upper_bounds, dtype=np.float64)

    @classmethod
    def euclidean(cls, dim: int) -> "ConfigurationSpace":
        return cls([JointType.TRANSLATION] * dim)

    @classmethod
    def planar_arm(cls, num_links: int) -> "ConfigurationSpace":
        return cls(
            [JointType.SO2] * num_links,
            joint_names=[f"link_{i}" for i in range(num_links)],
        )

    def __repr__(self):
        return (
            f"ConfigurationSpace(joints: {[jt.value for jt in self.joint_types]}, "
            f"config size: {self.config_size}, tangent size: {self.tangent_size})"
        )

    def joint_tangent_index(self, name: str) -> int:
        return self.joint_names.index(name)

    def neutral(self) -> NDArray:
        q = np.zeros(self.config_size)
        if len(self._so2_cfg) > 0:
            q[self._so2_cfg[:, 0]] = 1.0
        return q

    def difference(self, q1: NDArray, q0: NDArray) -> NDArray:
        """
        Tangent vector v such that integrate(q0, v) == q1.
        """
        v = np.empty(self.tangent_size)
        v[self._r_tan] = q1[self._r_cfg] - q0[self._r_cfg]

        if len(self._so2_tan) > 0:
            cs1 = np.ascontiguousarray(q1[self._so2_cfg], dtype=np.float64)
            cs0 = np.ascontiguousarray(q0[self._so2_cfg], dtype=np.float64)
            v[self._so2_tan] = compute_so2_difference(cs1, cs0)

        return v

    def integrate(self, q: NDArray, v: NDArray) -> NDArray:
        res = np.empty(self.config_size)
        res[self._r_cfg] = q[self._r_cfg] + v[self._r_tan]

        if len(self._so2_tan) > 0:
            cs = np.ascontiguousarray(q[self._so2_cfg], dtype=np.float64)
            angles = np.ascontiguousarray(v[self._so2_tan], dtype=np.float64)
            res[self._so2_cfg] = compute_so2_integrate(cs, angles)

        return res

    def coordinates(self, q: NDArray) -> NDArray:
        """Local chart around the neutral configuration (angles for SO2 joints)."""
        return self.difference(q, self.neutral())

    def from_coordinates(self, x: NDArray) -> NDArray:
        return self.integrate(self.neutral(), np.asarray(x, dtype=np.float64))

    def interpolate(self, q0: NDArray, q1: NDArray, u: float) -> NDArray:
        return self.integrate(q0, u * self.difference(q1, q0))

    def distance(self, q0: NDArray, q1: NDArray) -> float:
        return float(np.linalg.norm(self.difference(q1, q0)))

    def normalize(self, q: NDArray) -> NDArray:
        res = np.array(q, dtype=np.float64)
        if len(self._so2_cfg) > 0:
            cs = res[self._so2_cfg]
            res[self._so2_cfg] = cs / np.linalg.norm(cs, axis=1)[:, None]
        return res

    def random_configuration(self, rng: Optional[np.random.Generator] = None) -> NDArray:
        if rng is None:
            rng = np.random.default_rng()

        x = np.empty(self.tangent_size)
        x[self._r_tan] = rng.uniform(
            self.lower_bounds[self._r_tan], self.upper_bounds[self._r_tan]
        )
        x[self._so2_tan] = rng.uniform(-np.pi, np.pi, len(self._so2_tan))

        return self.from_coordinates(x)
