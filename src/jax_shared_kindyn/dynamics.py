"""Floating-base dynamics quantities: CoM, momentum, mass matrix, static forces.

Generalized velocities are nu = [base velocity (6); joint velocities (n)], where
the meaning of the base part depends on the velocity representation:

* BODY_FIXED: base twist in the base frame.
* MIXED: base origin velocity and angular velocity, both in the inertial frame.
* INERTIAL_FIXED: base twist expressed in the inertial frame.

Every function works internally with body-fixed link Jacobians and converts
with ``base_velocity_map``.
"""

import enum
from functools import partial

import jax
import jax.numpy as jnp
from jax import Array

from .chain import base_transform, forward_kinematics_base, link_relative_jacobians
from .core import RobotModel, RobotState
from .transforms import quaternion, se3, so3


class VelocityRepresentation(enum.Enum):
    """Frame convention for base velocities, Jacobians and momenta."""

    BODY_FIXED = "body"
    MIXED = "mixed"
    INERTIAL_FIXED = "inertial"


def spatial_inertia(mass: Array, com: Array, inertia: Array) -> Array:
    """6x6 spatial inertia about the link origin, in link frame (linear first)."""
    c = so3.skew_symmetric(com)
    I3 = jnp.eye(3, dtype=c.dtype)
    top = jnp.concatenate([mass * I3, -mass * c], axis=-1)
    bottom = jnp.concatenate([mass * c, inertia - mass * c @ c], axis=-1)
    return jnp.concatenate([top, bottom], axis=-2)


def base_body_twist(state: RobotState) -> Array:
    """Body-fixed twist of the base from the state's base velocities."""
    q = state.normalized_base_quaternion()
    R = quaternion.unit_to_rotation_matrix(q)
    linear = R.T @ state.base_linear_velocity
    angular = quaternion.left_trivialized_derivative_inverse(q) @ state.base_quaternion_velocity
    return jnp.concatenate([linear, angular])


def base_velocity_map(representation: VelocityRepresentation, T_world_base: Array) -> Array:
    """6x6 matrix X with body base twist = X @ base velocity in ``representation``."""
    if representation is VelocityRepresentation.BODY_FIXED:
        return jnp.eye(6, dtype=T_world_base.dtype)
    if representation is VelocityRepresentation.MIXED:
        Rt = T_world_base[:3, :3].T
        zeros = jnp.zeros_like(Rt)
        return jnp.block([[Rt, zeros], [zeros, Rt]])
    return se3.adjoint(se3.inverse(T_world_base))


def output_velocity_map(representation: VelocityRepresentation, T_world_frame: Array) -> Array:
    """6x6 matrix converting a body-fixed frame twist into ``representation``."""
    if representation is VelocityRepresentation.BODY_FIXED:
        return jnp.eye(6, dtype=T_world_frame.dtype)
    if representation is VelocityRepresentation.MIXED:
        R = T_world_frame[:3, :3]
        zeros = jnp.zeros_like(R)
        return jnp.block([[R, zeros], [zeros, R]])
    return se3.adjoint(T_world_frame)


def generalized_velocity_map(representation: VelocityRepresentation, T_world_base: Array,
                             num_dofs: int) -> Array:
    """(6+n)x(6+n) block diagonal of base_velocity_map and identity."""
    X = base_velocity_map(representation, T_world_base)
    full = jnp.eye(6 + num_dofs, dtype=X.dtype)
    return full.at[:6, :6].set(X)


def velocity_vector(state: RobotState, representation: VelocityRepresentation) -> Array:
    """Generalized velocity of ``state`` in ``representation``, (6+n,)."""
    twist = base_body_twist(state)
    T = base_transform(state.base_position, state.base_quaternion)
    if representation is VelocityRepresentation.BODY_FIXED:
        base = twist
    elif representation is VelocityRepresentation.MIXED:
        R = T[:3, :3]
        base = jnp.concatenate([state.base_linear_velocity, R @ twist[3:]])
    else:
        base = se3.adjoint(T) @ twist
    return jnp.concatenate([base, state.joints_velocity])


@jax.jit
def link_body_jacobians(robot: RobotModel, q: Array) -> Array:
    """(num_links, 6, 6+n) maps from [body base twist; s_dot] to link body twists."""
    transforms = forward_kinematics_base(robot, q)
    base_part = se3.adjoint(se3.inverse(transforms))
    joint_part = link_relative_jacobians(robot, q)
    return jnp.concatenate([base_part, joint_part], axis=-1)


@jax.jit
def link_world_transforms(robot: RobotModel, state: RobotState) -> Array:
    """World poses of every link, (num_links, 4, 4)."""
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    return jnp.matmul(T_world_base, forward_kinematics_base(robot, state.joints_position))


def _link_spatial_inertias(robot: RobotModel) -> Array:
    return jax.vmap(spatial_inertia)(robot.link_masses, robot.link_coms, robot.link_inertias)


@jax.jit
def com_in_base(robot: RobotModel, q: Array) -> Array:
    """Centre of mass expressed in the base frame."""
    transforms = forward_kinematics_base(robot, q)
    points = se3.apply(transforms, robot.link_coms)
    return jnp.sum(robot.link_masses[:, None] * points, axis=0) / jnp.sum(robot.link_masses)


@partial(jax.jit, static_argnames=("order",))
def com_in_base_derivative(robot: RobotModel, q: Array, order: int = 1) -> Array:
    """Joint derivative of ``com_in_base``, shape (3,) + (num_dofs,) * order."""
    fn = lambda joints: com_in_base(robot, joints)
    for _ in range(order):
        fn = jax.jacfwd(fn)
    return fn(q)


@jax.jit
def com_position(robot: RobotModel, state: RobotState) -> Array:
    """Centre of mass in the inertial frame."""
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    return se3.apply(T_world_base, com_in_base(robot, state.joints_position))


@partial(jax.jit, static_argnames=("representation",))
def com_jacobian(robot: RobotModel, state: RobotState,
                 representation: VelocityRepresentation) -> Array:
    """(3, 6+n) CoM Jacobian; BODY_FIXED and MIXED representations only."""
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    R = T_world_base[:3, :3]
    relative_com = R @ com_in_base(robot, state.joints_position)
    joints_part = R @ com_in_base_derivative(robot, state.joints_position, order=1)
    mixed = jnp.concatenate(
        [jnp.eye(3, dtype=R.dtype), -so3.skew_symmetric(relative_com), joints_part], axis=1)
    if representation is VelocityRepresentation.MIXED:
        return mixed
    to_mixed = generalized_velocity_map(VelocityRepresentation.MIXED, T_world_base,
                                        state.num_dofs)
    return mixed @ jnp.linalg.inv(to_mixed)


def _momentum_frame(representation: VelocityRepresentation, T_world_base: Array) -> Array:
    """World pose of the frame the momentum is expressed in."""
    if representation is VelocityRepresentation.BODY_FIXED:
        return T_world_base
    if representation is VelocityRepresentation.MIXED:
        return se3.from_position_and_rotation(T_world_base[:3, 3], jnp.eye(3, dtype=T_world_base.dtype))
    return jnp.eye(4, dtype=T_world_base.dtype)


def _momentum_body_map(robot: RobotModel, state: RobotState,
                       representation: VelocityRepresentation) -> Array:
    """(6, 6+n) map from the body generalized velocity to the momentum."""
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    T_world_links = jnp.matmul(T_world_base, forward_kinematics_base(robot, state.joints_position))
    T_world_frame = _momentum_frame(representation, T_world_base)
    to_frame = se3.adjoint(jnp.matmul(se3.inverse(T_world_links), T_world_frame))
    jacobians = link_body_jacobians(robot, state.joints_position)
    inertias = _link_spatial_inertias(robot)
    return jnp.einsum("lji,ljk,lkm->im", to_frame, inertias, jacobians)


@partial(jax.jit, static_argnames=("representation",))
def momentum_jacobian(robot: RobotModel, state: RobotState,
                      representation: VelocityRepresentation) -> Array:
    """(6, 6+n) Jacobian of the linear/angular momentum w.r.t. nu."""
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    X = generalized_velocity_map(representation, T_world_base, state.num_dofs)
    return _momentum_body_map(robot, state, representation) @ X


@partial(jax.jit, static_argnames=("representation",))
def linear_angular_momentum(robot: RobotModel, state: RobotState,
                            representation: VelocityRepresentation) -> Array:
    """Linear and angular momentum (6,) expressed according to ``representation``."""
    nu = velocity_vector(state, VelocityRepresentation.BODY_FIXED)
    return _momentum_body_map(robot, state, representation) @ nu


@jax.jit
def momentum_joints_derivative(robot: RobotModel, state: RobotState) -> Array:
    """(6, n) derivative of the body-fixed momentum w.r.t. joints at fixed body velocity."""
    nu = velocity_vector(state, VelocityRepresentation.BODY_FIXED)

    def momentum(joints):
        moved = state.replace(joints_position=joints)
        return _momentum_body_map(robot, moved, VelocityRepresentation.BODY_FIXED) @ nu

    return jax.jacfwd(momentum)(state.joints_position)


@partial(jax.jit, static_argnames=("representation",))
def mass_matrix(robot: RobotModel, state: RobotState,
                representation: VelocityRepresentation) -> Array:
    """(6+n, 6+n) free-floating mass matrix."""
    jacobians = link_body_jacobians(robot, state.joints_position)
    inertias = _link_spatial_inertias(robot)
    body = jnp.einsum("lji,ljk,lkm->im", jacobians, inertias, jacobians)
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    X = generalized_velocity_map(representation, T_world_base, state.num_dofs)
    return X.T @ body @ X


@jax.jit
def frame_body_velocity(robot: RobotModel, state: RobotState, link_idx) -> Array:
    """Body-fixed twist of a link."""
    jacobians = link_body_jacobians(robot, state.joints_position)
    return jacobians[link_idx] @ velocity_vector(state, VelocityRepresentation.BODY_FIXED)


@jax.jit
def frame_velocity_joints_derivative(robot: RobotModel, state: RobotState, link_idx) -> Array:
    """(6, n) derivative of the body twist of a link w.r.t. joints at fixed body velocity."""
    nu = velocity_vector(state, VelocityRepresentation.BODY_FIXED)

    def velocity(joints):
        return link_body_jacobians(robot, joints)[link_idx] @ nu

    return jax.jacfwd(velocity)(state.joints_position)


def _gravity_wrenches(robot: RobotModel, T_world_links: Array, gravity: Array) -> Array:
    """(num_links, 6) gravity wrenches about each link origin, in link frame."""
    forces = robot.link_masses[:, None] * jnp.einsum("lji,j->li", T_world_links[:, :3, :3], gravity)
    torques = jnp.cross(robot.link_coms, forces)
    return jnp.concatenate([forces, torques], axis=-1)


@jax.jit
def static_forces(robot: RobotModel, state: RobotState, gravity: Array,
                  link_wrenches: Array) -> Array:
    """Generalized forces (6+n,) balancing gravity and external link wrenches.

    ``link_wrenches`` is (num_links, 6), each expressed in its link frame.
    The result is dual to the BODY_FIXED generalized velocity.
    """
    T_world_base = base_transform(state.base_position, state.base_quaternion)
    T_world_links = jnp.matmul(T_world_base, forward_kinematics_base(robot, state.joints_position))
    wrenches = _gravity_wrenches(robot, T_world_links, gravity) + link_wrenches
    jacobians = link_body_jacobians(robot, state.joints_position)
    return -jnp.einsum("lji,lj->i", jacobians, wrenches)


@jax.jit
def static_forces_joints_derivative(robot: RobotModel, state: RobotState, gravity: Array,
                                    link_wrenches: Array) -> Array:
    """(6+n, n) derivative of ``static_forces`` w.r.t. the joint positions."""
    def forces(joints):
        return static_forces(robot, state.replace(joints_position=joints), gravity, link_wrenches)

    return jax.jacfwd(forces)(state.joints_position)
