"""SE(3) rigid body transforms in JAX.

Transforms are (..., 4, 4) homogeneous matrices, twists and wrenches are 6D
vectors with the linear part first: [vx, vy, vz, wx, wy, wz] and
[fx, fy, fz, tx, ty, tz]. All functions are pure and JIT-able.
"""

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Homogeneous transform with rotation ``R`` and origin ``p``.

    Batch dimensions of ``p`` and ``R`` are broadcast against each other.

    Args:
        p: (..., 3) origin
        R: (..., 3, 3) rotation

    Returns:
        (..., 4, 4) transform
    """
    batch = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    upper = jnp.concatenate([jnp.broadcast_to(R, batch + (3, 3)),
                             jnp.broadcast_to(p, batch + (3,))[..., None]], axis=-1)
    last_row = jnp.broadcast_to(jnp.array([0.0, 0.0, 0.0, 1.0], dtype=upper.dtype), batch + (1, 4))
    return jnp.concatenate([upper, last_row], axis=-2)


def multiply(T1: Array, T2: Array) -> Array:
    return jnp.matmul(T1, T2)


def inverse(T: Array) -> Array:
    """[[R, p], [0, 1]]^-1 = [[R^T, -R^T p], [0, 1]]."""
    R_t = jnp.swapaxes(T[..., :3, :3], -1, -2)
    return from_position_and_rotation(-jnp.einsum("...ij,...j->...i", R_t, T[..., :3, 3]), R_t)


def apply(T: Array, points: Array) -> Array:
    """Map (..., 3) points through (..., 4, 4) transforms."""
    return jnp.einsum("...ij,...j->...i", T[..., :3, :3], points) + T[..., :3, 3]


def _blocks(upper_left, upper_right, lower_left, lower_right):
    return jnp.concatenate([jnp.concatenate([upper_left, upper_right], axis=-1),
                            jnp.concatenate([lower_left, lower_right], axis=-1)], axis=-2)


def adjoint(T: Array) -> Array:
    """
    Twist adjoint of ``T_ab``: V_a = Ad(T_ab) V_b.

    Returns:
        (..., 6, 6) matrix [[R, [p] R], [0, R]]
    """
    R = T[..., :3, :3]
    return _blocks(R, so3.skew_symmetric(T[..., :3, 3]) @ R, jnp.zeros_like(R), R)


def adjoint_wrench(T: Array) -> Array:
    """
    Wrench adjoint Ad(T_ab)^-T: f_a = Ad*(T_ab) f_b.

    Returns:
        (..., 6, 6) matrix [[R, 0], [[p] R, R]]
    """
    R = T[..., :3, :3]
    return _blocks(R, jnp.zeros_like(R), so3.skew_symmetric(T[..., :3, 3]) @ R, R)


def local_twist(T: Array, T_dot: Array) -> Array:
    """
    Body-fixed twist [v; w] read from T^-1 @ T_dot.

    ``T_dot`` may carry trailing axes (one per joint when it comes from
    ``jax.jacfwd``); they are kept in the output.

    Args:
        T: (4, 4) transform
        T_dot: (4, 4, ...) derivative of T

    Returns:
        (6, ...) twist(s)
    """
    local = jnp.einsum("ij,jk...->ik...", inverse(T), T_dot)
    angular = jnp.moveaxis(so3.vee(jnp.moveaxis(local[:3, :3], (0, 1), (-2, -1))), -1, 0)
    return jnp.concatenate([local[:3, 3], angular], axis=0)
