"""RobotState value type for a floating-base robot.

A state is immutable: every constructor copies its inputs into fresh JAX
arrays, so handing a state to a cache never aliases caller buffers.
"""

from typing import Optional

import jax.numpy as jnp
import numpy as np
from flax import struct
from jax import Array

from ..transforms import quaternion

_FIELDS = (
    "base_position",
    "base_quaternion",
    "joints_position",
    "base_linear_velocity",
    "base_quaternion_velocity",
    "joints_velocity",
)


@struct.dataclass
class RobotState:
    """Generalized position and velocity of a floating-base robot.

    Attributes:
        base_position: (3,) base origin in the inertial frame.
        base_quaternion: (4,) base orientation (w, x, y, z). Kept raw: it may
                         be slightly off the unit sphere, and derivatives are
                         taken with respect to this raw value.
        joints_position: (num_dofs,) joint positions.
        base_linear_velocity: (3,) base origin velocity in the inertial frame.
        base_quaternion_velocity: (4,) rate of the raw base quaternion.
        joints_velocity: (num_dofs,) joint velocities.
    """
    base_position: Array
    base_quaternion: Array
    joints_position: Array
    base_linear_velocity: Array
    base_quaternion_velocity: Array
    joints_velocity: Array

    @classmethod
    def zeros(cls, num_dofs: int) -> "RobotState":
        """State at the origin with identity orientation and zero velocity."""
        return cls(
            base_position=jnp.zeros(3),
            base_quaternion=jnp.array([1.0, 0.0, 0.0, 0.0]),
            joints_position=jnp.zeros(num_dofs),
            base_linear_velocity=jnp.zeros(3),
            base_quaternion_velocity=jnp.zeros(4),
            joints_velocity=jnp.zeros(num_dofs),
        )

    @classmethod
    def from_arrays(
        cls,
        base_position,
        base_quaternion,
        joints_position,
        base_linear_velocity=None,
        base_quaternion_velocity=None,
        joints_velocity=None,
    ) -> "RobotState":
        """Build a state from array-likes, copying every input."""
        joints_position = jnp.array(joints_position, dtype=float)
        num_dofs = joints_position.shape[0]
        return cls(
            base_position=jnp.array(base_position, dtype=float),
            base_quaternion=jnp.array(base_quaternion, dtype=float),
            joints_position=joints_position,
            base_linear_velocity=_copy_or_zeros(base_linear_velocity, 3),
            base_quaternion_velocity=_copy_or_zeros(base_quaternion_velocity, 4),
            joints_velocity=_copy_or_zeros(joints_velocity, num_dofs),
        )

    @property
    def num_dofs(self) -> int:
        return self.joints_position.shape[0]

    def as_vector(self) -> Array:
        """All components flattened in field declaration order."""
        return jnp.concatenate([jnp.ravel(getattr(self, name)) for name in _FIELDS])

    def normalized_base_quaternion(self) -> Array:
        return quaternion.normalize(self.base_quaternion)

    def copy(self) -> "RobotState":
        return self.replace(**{name: jnp.array(getattr(self, name)) for name in _FIELDS})

    def is_close(self, other: "RobotState", tolerance: float) -> bool:
        """True if every component differs by less than ``tolerance``.

        Identical states are always close, even for a zero tolerance. States
        with different shapes are never close.
        """
        for name in _FIELDS:
            mine = np.asarray(getattr(self, name))
            theirs = np.asarray(getattr(other, name))
            if mine.shape != theirs.shape:
                return False
            if not mine.size:
                continue
            difference = np.max(np.abs(mine - theirs))
            if not (difference < tolerance or difference == 0.0):
                return False
        return True


def _copy_or_zeros(value: Optional[object], size: int) -> Array:
    if value is None:
        return jnp.zeros(size)
    return jnp.array(value, dtype=float)
