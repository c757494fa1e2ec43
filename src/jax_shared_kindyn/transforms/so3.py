"""SO(3) helpers in JAX.

Rotations are (..., 3, 3) matrices. All functions are pure and JIT-able.
"""

import jax
import jax.numpy as jnp

Array = jax.Array


def skew_symmetric(v: Array) -> Array:
    """
    Cross product matrix [v] with [v] @ u = v x u.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    x, y, z = v[..., 0], v[..., 1], v[..., 2]
    zero = jnp.zeros_like(x)
    rows = [
        jnp.stack([zero, -z, y], axis=-1),
        jnp.stack([z, zero, -x], axis=-1),
        jnp.stack([-y, x, zero], axis=-1),
    ]
    return jnp.stack(rows, axis=-2)


def vee(K: Array) -> Array:
    """
    Vector of a (..., 3, 3) skew-symmetric matrix.

    Reads the lower triangle only, so autodiff velocity matrices that are
    skew up to round-off are accepted.
    """
    return jnp.stack([K[..., 2, 1], K[..., 0, 2], K[..., 1, 0]], axis=-1)


def from_rpy(rpy: Array) -> Array:
    """URDF roll-pitch-yaw angles to R = Rz(yaw) Ry(pitch) Rx(roll)."""
    cr, cp, cy = jnp.cos(rpy)
    sr, sp, sy = jnp.sin(rpy)
    return jnp.array([
        [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
        [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
        [-sp, cp * sr, cp * cr],
    ])
