"""Core kinematics algorithms: forward kinematics and relative Jacobians.

Poses are computed relative to the floating base by a scan over the
breadth-first ordered links from the root. The floating base defaults to the
root (link 0) and can be any other link. Relative Jacobians are obtained with JAX
automatic differentiation of those poses and are body-fixed ("left
trivialized"): column i is the twist of the target frame with respect to the
base frame, expressed in the target frame, per unit rate of joint i.
"""

from functools import partial
from typing import Dict

import jax
import jax.numpy as jnp
from jax import Array

from .core import RobotModel
from .transforms import quaternion, se3


def forward_kinematics(robot: RobotModel, q: Array) -> Dict[str, Array]:
    """Compute the pose of every link relative to the floating base.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Joint positions array of shape (num_dofs,) for actuated joints only

    Returns:
        Dictionary mapping link names to their 4x4 SE(3) poses in base frame
    """
    base_transforms = forward_kinematics_base(robot, q)
    return {name: base_transforms[i] for i, name in enumerate(robot.link_names)}


@jax.jit
def forward_kinematics_base(robot: RobotModel, q: Array) -> Array:
    """Array of link poses relative to the floating base.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Joint positions array of shape (num_dofs,)

    Returns:
        Array of shape (num_links, 4, 4)
    """
    num_links = len(robot.link_names)

    # Scatter the actuated joint values onto the links they move
    q_full = jnp.zeros(num_links, dtype=q.dtype)
    q_full = q_full.at[robot.actuated_joint_to_link_idx].set(q)

    base_transforms = jnp.broadcast_to(jnp.eye(4, dtype=q.dtype), (num_links, 4, 4))

    def scan_body(carry, i):
        """Processes link `i` using its parent's pose from `carry`."""
        T_base_to_parent = carry[robot.parent_indices[i]]

        T_joint_motion = _joint_motion(robot.joint_axes[i], q_full[i])
        T_parent_to_child = robot.joint_transforms[i] @ T_joint_motion

        carry = carry.at[i].set(T_base_to_parent @ T_parent_to_child)
        return carry, None

    # Links are breadth-first ordered, so parents are always processed first
    final_transforms, _ = jax.lax.scan(scan_body, base_transforms, jnp.arange(1, num_links))

    if robot.floating_base_idx != 0:
        # re-express the root-relative poses in the floating base
        final_transforms = se3.inverse(final_transforms[robot.floating_base_idx]) @ final_transforms
    return final_transforms


def _joint_motion(axis: Array, value: Array) -> Array:
    """Transform produced by a revolute or prismatic joint at ``value``.

    Written with sin/cos directly so that derivatives of any order stay smooth
    at value == 0.
    """
    linear, angular = axis[:3], axis[3:]
    c, s = jnp.cos(value), jnp.sin(value)
    K = jnp.array([
        [0.0, -angular[2], angular[1]],
        [angular[2], 0.0, -angular[0]],
        [-angular[1], angular[0], 0.0],
    ], dtype=axis.dtype)
    # Rodrigues formula for a unit (or zero) axis
    R = jnp.eye(3, dtype=axis.dtype) + s * K + (1.0 - c) * (K @ K)
    return se3.from_position_and_rotation(linear * value, R)


@jax.jit
def base_transform(base_position: Array, base_quaternion: Array) -> Array:
    """World pose of the floating base; the raw quaternion is normalized."""
    return se3.from_position_and_rotation(
        base_position, quaternion.to_rotation_matrix(base_quaternion))


@jax.jit
def relative_transform(robot: RobotModel, q: Array, base_idx, target_idx) -> Array:
    """Pose of link ``target_idx`` expressed in link ``base_idx``."""
    transforms = forward_kinematics_base(robot, q)
    return se3.inverse(transforms[base_idx]) @ transforms[target_idx]


@jax.jit
def relative_left_jacobian(robot: RobotModel, q: Array, base_idx, target_idx) -> Array:
    """Body-fixed Jacobian of ``target_idx`` relative to ``base_idx``.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Joint positions array of shape (num_dofs,)
        base_idx: index of the reference link
        target_idx: index of the target link

    Returns:
        (6, num_dofs) Jacobian, linear rows first
    """
    def transform(joints):
        return relative_transform(robot, joints, base_idx, target_idx)

    T = transform(q)
    dT = jax.jacfwd(transform)(q)  # (4, 4, num_dofs)
    return se3.local_twist(T, dT)


@partial(jax.jit, static_argnames=("order",))
def relative_left_jacobian_derivative(robot: RobotModel, q: Array, base_idx, target_idx,
                                      order: int = 1) -> Array:
    """Derivative of ``relative_left_jacobian`` w.r.t. the joints.

    Args:
        order: number of differentiations; order == 0 is the Jacobian itself

    Returns:
        Array of shape (6, num_dofs) + (num_dofs,) * order
    """
    fn = lambda joints: relative_left_jacobian(robot, joints, base_idx, target_idx)
    for _ in range(order):
        fn = jax.jacfwd(fn)
    return fn(q)


@jax.jit
def link_relative_jacobians(robot: RobotModel, q: Array) -> Array:
    """Body-fixed Jacobians of every link relative to the base, (num_links, 6, num_dofs)."""
    transforms = forward_kinematics_base(robot, q)
    dT = jax.jacfwd(lambda joints: forward_kinematics_base(robot, joints))(q)
    return jax.vmap(se3.local_twist)(transforms, dT)


def jacobian(robot: RobotModel, q: Array, link_name: str) -> Array:
    """Body-fixed Jacobian of a link relative to the floating base.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Joint positions array of shape (num_dofs,)
        link_name: Name of the target link

    Returns:
        (6, num_dofs) Jacobian matrix relating joint velocities to the
        link twist relative to the base, expressed in the link frame
    """
    link_idx = robot.link_index(link_name)
    return relative_left_jacobian(robot, q, robot.floating_base_idx, link_idx)
