"""Quaternion expression builders.

Normalization is always an explicit node: ``normalized_quaternion(raw)``
divides the raw variable by its norm, so differentiating anything built on
top of it with respect to the raw variable includes the normalization
Jacobian through the chain rule.
"""

import jax.numpy as jnp

from ..transforms import quaternion
from .graph import Expression, Function


def normalized_quaternion(raw: Expression, name: str = "normalized_quaternion") -> Expression:
    return Function(quaternion.normalize, (raw,), name=name)


def rotation_from_quaternion(unit_quaternion: Expression, name: str = "rotation") -> Expression:
    """R = I + 2 w [v] + 2 [v]^2; the operand must already be unit norm."""
    return Function(quaternion.unit_to_rotation_matrix, (unit_quaternion,), name=name)


def left_trivialized_map(unit_quaternion: Expression) -> Expression:
    """(4, 3) map from body angular velocity to quaternion rate."""
    return Function(quaternion.left_trivialized_derivative, (unit_quaternion,),
                    name=f"G({unit_quaternion.name})")


def body_twist_from_quaternion_velocity(linear_velocity: Expression,
                                        quaternion_velocity: Expression,
                                        unit_quaternion: Expression,
                                        name: str = "body_twist") -> Expression:
    """Body-fixed twist from an inertial linear velocity and a quaternion rate.

    Args:
        linear_velocity: (3,) origin velocity in the inertial frame
        quaternion_velocity: (4,) quaternion rate
        unit_quaternion: (4,) normalized orientation

    Returns:
        (6,) expression [R^T v; G^-1(q) q_dot]
    """
    def twist(v, q_dot, q):
        R = quaternion.unit_to_rotation_matrix(q)
        omega = quaternion.left_trivialized_derivative_inverse(q) @ q_dot
        return jnp.concatenate([R.T @ v, omega])

    return Function(twist, (linear_velocity, quaternion_velocity, unit_quaternion), name=name)


def quaternion_error(frame_quaternion: Expression, desired_quaternion: Expression,
                     name: str = "quaternion_error") -> Expression:
    """conj(q_desired) * q, the identity quaternion when the two orientations agree."""
    return Function(quaternion.error_quaternion, (frame_quaternion, desired_quaternion), name=name)


def quaternion_product(left: Expression, right: Expression, name: str = "quaternion_product") -> Expression:
    return Function(quaternion.multiply, (left, right), name=name)
