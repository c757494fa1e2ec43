"""Unit quaternion maps and their derivatives in JAX.

Quaternions are (..., 4) arrays in (w, x, y, z) order. The "left trivialized"
maps relate the quaternion rate to the body-fixed angular velocity:

    q_dot = left_trivialized_derivative(q) @ omega_body
    omega_body = left_trivialized_derivative_inverse(q) @ q_dot
"""

from logging import getLogger

import jax
import jax.numpy as jnp
import numpy as np

from ..config import QUATERNION_BOUNDS_TOLERANCE
from . import so3

logger = getLogger(__name__)

Array = jax.Array


def norm(quaternions: Array) -> Array:
    """Euclidean norm of (..., 4) quaternions."""
    return jnp.linalg.norm(quaternions, axis=-1)


def normalize(quaternions: Array) -> Array:
    """Normalize quaternions to unit length."""
    return quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)


def normalized_derivative(quaternion: Array) -> Array:
    """
    Jacobian of q / ||q|| with respect to the raw quaternion q.

    Args:
        quaternion: (4,) raw, possibly non-unit quaternion

    Returns:
        (4, 4) matrix (||q||^2 I - q q^T) / ||q||^3
    """
    squared_norm = jnp.dot(quaternion, quaternion)
    power_three_norm = squared_norm * jnp.sqrt(squared_norm)
    outer = jnp.outer(quaternion, quaternion)
    return (squared_norm * jnp.eye(4, dtype=quaternion.dtype) - outer) / power_three_norm


def unit_to_rotation_matrix(quaternions: Array) -> Array:
    """
    Rotation matrix of a unit quaternion, R = I + 2 w [v] + 2 [v]^2.

    No normalization is applied: callers that hold a raw quaternion must
    normalize it first so that the normalization shows up in derivatives.

    Args:
        quaternions: (..., 4) unit quaternions

    Returns:
        (..., 3, 3) rotation matrices
    """
    w = quaternions[..., 0]
    skew_v = so3.skew_symmetric(quaternions[..., 1:])
    I = jnp.broadcast_to(jnp.eye(3, dtype=quaternions.dtype), skew_v.shape)
    return I + 2.0 * w[..., None, None] * skew_v + 2.0 * jnp.matmul(skew_v, skew_v)


def to_rotation_matrix(quaternions: Array) -> Array:
    """Rotation matrix of (possibly non-unit) quaternions."""
    return unit_to_rotation_matrix(normalize(quaternions))


def from_rotation_matrix(matrix: Array) -> Array:
    """
    Convert rotation matrices to quaternions (w, x, y, z) with w >= 0.
    Batch-safe and JIT-friendly implementation.

    Args:
        matrix: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 4) array of unit quaternions
    """
    m00, m01, m02 = matrix[..., 0, 0], matrix[..., 0, 1], matrix[..., 0, 2]
    m10, m11, m12 = matrix[..., 1, 0], matrix[..., 1, 1], matrix[..., 1, 2]
    m20, m21, m22 = matrix[..., 2, 0], matrix[..., 2, 1], matrix[..., 2, 2]

    trace = m00 + m11 + m22
    eps = jnp.finfo(matrix.dtype).eps

    # One candidate per largest diagonal term (Shepperd's method)
    candidates = [
        (jnp.stack([trace + 1.0, m21 - m12, m02 - m20, m10 - m01], axis=-1),
         1.0 + trace),
        (jnp.stack([m21 - m12, m00 - m11 - m22 + 1.0, m01 + m10, m02 + m20], axis=-1),
         1.0 + m00 - m11 - m22),
        (jnp.stack([m02 - m20, m01 + m10, m11 - m00 - m22 + 1.0, m12 + m21], axis=-1),
         1.0 + m11 - m00 - m22),
        (jnp.stack([m10 - m01, m02 + m20, m12 + m21, m22 - m00 - m11 + 1.0], axis=-1),
         1.0 + m22 - m00 - m11),
    ]
    scaled = [0.5 * q / jnp.sqrt(jnp.maximum(s, eps))[..., None] for q, s in candidates]

    mask0 = trace > 0
    mask1 = (~mask0) & (m00 > m11) & (m00 > m22)
    mask2 = (~mask0) & (~mask1) & (m11 > m22)
    mask3 = (~mask0) & (~mask1) & (~mask2)

    quaternion = sum(
        jnp.where(mask[..., None], q, 0.0)
        for mask, q in zip((mask0, mask1, mask2, mask3), scaled)
    )

    quaternion = jnp.where(quaternion[..., 0:1] < 0, -quaternion, quaternion)
    return normalize(quaternion)


def conjugate(quaternions: Array) -> Array:
    """Conjugate, i.e. the inverse of a unit quaternion."""
    return quaternions * jnp.array([1.0, -1.0, -1.0, -1.0], dtype=quaternions.dtype)


def conjugate_derivative() -> Array:
    """Constant Jacobian of conjugate()."""
    return jnp.diag(jnp.array([1.0, -1.0, -1.0, -1.0]))


def multiply(q1: Array, q2: Array) -> Array:
    """
    Hamilton product q1 * q2.

    Args:
        q1: (..., 4) left quaternion
        q2: (..., 4) right quaternion

    Returns:
        (..., 4) product quaternion
    """
    w1, v1 = q1[..., :1], q1[..., 1:]
    w2, v2 = q2[..., :1], q2[..., 1:]
    w = w1 * w2 - jnp.sum(v1 * v2, axis=-1, keepdims=True)
    v = w1 * v2 + w2 * v1 + jnp.cross(v1, v2)
    return jnp.concatenate([w, v], axis=-1)


def left_trivialized_derivative(quaternion: Array) -> Array:
    """
    Map from body-fixed angular velocity to quaternion rate.

    Args:
        quaternion: (4,) unit quaternion

    Returns:
        (4, 3) matrix 0.5 * [[-v^T], [w I + [v]]]
    """
    w, v = quaternion[0], quaternion[1:]
    top = -v[None, :]
    bottom = w * jnp.eye(3, dtype=quaternion.dtype) + so3.skew_symmetric(v)
    return 0.5 * jnp.concatenate([top, bottom], axis=0)


def left_trivialized_derivative_inverse(quaternion: Array) -> Array:
    """
    Map from quaternion rate to body-fixed angular velocity.

    Args:
        quaternion: (4,) unit quaternion

    Returns:
        (3, 4) matrix 2 * [-v, w I - [v]]
    """
    w, v = quaternion[0], quaternion[1:]
    right = w * jnp.eye(3, dtype=quaternion.dtype) - so3.skew_symmetric(v)
    return 2.0 * jnp.concatenate([-v[:, None], right], axis=1)


def left_trivialized_derivative_times_omega_jacobian(omega: Array) -> Array:
    """Jacobian of left_trivialized_derivative(q) @ omega with respect to q."""
    top = jnp.concatenate([jnp.zeros((1,), dtype=omega.dtype), -omega])[None, :]
    bottom = jnp.concatenate([omega[:, None], -so3.skew_symmetric(omega)], axis=1)
    return 0.5 * jnp.concatenate([top, bottom], axis=0)


def rotated_vector_jacobian(vector: Array, quaternion: Array) -> Array:
    """Jacobian of unit_to_rotation_matrix(q) @ vector with respect to q, (3, 4)."""
    return jax.jacfwd(lambda q: unit_to_rotation_matrix(q) @ vector)(quaternion)


def error_quaternion(quaternion: Array, desired_quaternion: Array) -> Array:
    """Quaternion of R_desired^T R, i.e. conj(q_desired) * q."""
    return multiply(conjugate(desired_quaternion), quaternion)


def bounds_respected(quaternion, tolerance: float = QUATERNION_BOUNDS_TOLERANCE) -> bool:
    """Check w in [-1, 1 + tol] and every vector component in [-1 - tol, 1 + tol]."""
    q = np.asarray(quaternion, dtype=float)
    ok = bool(q[0] >= -1.0 and q[0] <= 1.0 + tolerance)
    ok = ok and bool(np.all(q[1:] >= -1.0 - tolerance) and np.all(q[1:] <= 1.0 + tolerance))
    if not ok:
        logger.warning("Quaternion out of bounds: %s", q)
    return ok
