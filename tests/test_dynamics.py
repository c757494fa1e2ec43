"""Tests for the floating-base dynamics functions."""

import jax.numpy as jnp
import numpy as np
import pytest

from jax_shared_kindyn import dynamics
from jax_shared_kindyn.chain import base_transform
from jax_shared_kindyn.dynamics import VelocityRepresentation

REPRESENTATIONS = list(VelocityRepresentation)


def _shift_joints(state, i, eps):
    return state.replace(joints_position=state.joints_position.at[i].add(eps))


def test_spatial_inertia_is_symmetric(robot):
    for i in range(robot.num_links):
        M = dynamics.spatial_inertia(robot.link_masses[i], robot.link_coms[i], robot.link_inertias[i])
        np.testing.assert_allclose(M, M.T, atol=1e-12)


def test_com_position(robot, state):
    T_world_links = dynamics.link_world_transforms(robot, state)
    points = jnp.einsum("lij,lj->li", T_world_links[:, :3, :3], robot.link_coms) + T_world_links[:, :3, 3]
    expected = jnp.sum(robot.link_masses[:, None] * points, axis=0) / robot.total_mass
    np.testing.assert_allclose(dynamics.com_position(robot, state), expected, atol=1e-12)


def test_com_in_base_derivative(robot, state):
    d_com = dynamics.com_in_base_derivative(robot, state.joints_position, order=1)
    assert d_com.shape == (3, robot.num_dofs)
    eps = 1e-6
    for i in range(robot.num_dofs):
        dq = jnp.zeros(robot.num_dofs).at[i].set(eps)
        numerical = (dynamics.com_in_base(robot, state.joints_position + dq)
                     - dynamics.com_in_base(robot, state.joints_position - dq)) / (2 * eps)
        np.testing.assert_allclose(d_com[:, i], numerical, atol=1e-8)

    assert dynamics.com_in_base_derivative(robot, state.joints_position, order=2).shape == (3, 6, 6)


@pytest.mark.parametrize("representation", REPRESENTATIONS)
def test_mass_matrix_energy_is_representation_invariant(robot, state, representation):
    M_body = dynamics.mass_matrix(robot, state, VelocityRepresentation.BODY_FIXED)
    nu_body = dynamics.velocity_vector(state, VelocityRepresentation.BODY_FIXED)

    M = dynamics.mass_matrix(robot, state, representation)
    nu = dynamics.velocity_vector(state, representation)

    np.testing.assert_allclose(M, M.T, atol=1e-10)
    assert jnp.all(jnp.linalg.eigvalsh(M) > 0.0)
    np.testing.assert_allclose(nu @ M @ nu, nu_body @ M_body @ nu_body, rtol=1e-10)


@pytest.mark.parametrize("representation", REPRESENTATIONS)
def test_momentum_jacobian_times_velocity(robot, state, representation):
    J = dynamics.momentum_jacobian(robot, state, representation)
    nu = dynamics.velocity_vector(state, representation)
    np.testing.assert_allclose(J @ nu, dynamics.linear_angular_momentum(robot, state, representation),
                               atol=1e-10)


def test_linear_momentum_is_mass_times_com_velocity(robot, state):
    h = dynamics.linear_angular_momentum(robot, state, VelocityRepresentation.MIXED)
    J_com = dynamics.com_jacobian(robot, state, VelocityRepresentation.MIXED)
    nu = dynamics.velocity_vector(state, VelocityRepresentation.MIXED)
    np.testing.assert_allclose(h[:3], robot.total_mass * (J_com @ nu), atol=1e-10)


def test_com_jacobian_representations_agree(robot, state):
    for representation in (VelocityRepresentation.BODY_FIXED, VelocityRepresentation.MIXED):
        J = dynamics.com_jacobian(robot, state, representation)
        assert J.shape == (3, 6 + robot.num_dofs)
    v_body = (dynamics.com_jacobian(robot, state, VelocityRepresentation.BODY_FIXED)
              @ dynamics.velocity_vector(state, VelocityRepresentation.BODY_FIXED))
    v_mixed = (dynamics.com_jacobian(robot, state, VelocityRepresentation.MIXED)
               @ dynamics.velocity_vector(state, VelocityRepresentation.MIXED))
    np.testing.assert_allclose(v_body, v_mixed, atol=1e-10)


def test_com_velocity_matches_time_difference(robot, state):
    dt = 1e-6

    def advance(s, step):
        return s.replace(
            base_position=s.base_position + step * s.base_linear_velocity,
            base_quaternion=s.base_quaternion + step * s.base_quaternion_velocity,
            joints_position=s.joints_position + step * s.joints_velocity,
        )

    numerical = (dynamics.com_position(robot, advance(state, dt))
                 - dynamics.com_position(robot, advance(state, -dt))) / (2 * dt)
    J = dynamics.com_jacobian(robot, state, VelocityRepresentation.MIXED)
    np.testing.assert_allclose(J @ dynamics.velocity_vector(state, VelocityRepresentation.MIXED),
                               numerical, atol=1e-7)


def test_momentum_joints_derivative(robot, state):
    d_h = dynamics.momentum_joints_derivative(robot, state)
    assert d_h.shape == (6, robot.num_dofs)
    eps = 1e-6
    for i in range(robot.num_dofs):
        numerical = (dynamics.linear_angular_momentum(robot, _shift_joints(state, i, eps),
                                                      VelocityRepresentation.BODY_FIXED)
                     - dynamics.linear_angular_momentum(robot, _shift_joints(state, i, -eps),
                                                        VelocityRepresentation.BODY_FIXED)) / (2 * eps)
        np.testing.assert_allclose(d_h[:, i], numerical, atol=1e-7)


def test_frame_velocity_joints_derivative(robot, state):
    idx = robot.link_index("l_foot")
    d_v = dynamics.frame_velocity_joints_derivative(robot, state, idx)
    eps = 1e-6
    for i in range(robot.num_dofs):
        numerical = (dynamics.frame_body_velocity(robot, _shift_joints(state, i, eps), idx)
                     - dynamics.frame_body_velocity(robot, _shift_joints(state, i, -eps), idx)) / (2 * eps)
        np.testing.assert_allclose(d_v[:, i], numerical, atol=1e-7)


def test_static_forces_balance_gravity_on_base(robot, state):
    gravity = jnp.array([0.0, 0.0, -9.81])
    tau = dynamics.static_forces(robot, state, gravity, jnp.zeros((robot.num_links, 6)))
    assert tau.shape == (6 + robot.num_dofs,)

    R = base_transform(state.base_position, state.base_quaternion)[:3, :3]
    np.testing.assert_allclose(tau[:3], -R.T @ (robot.total_mass * gravity), atol=1e-10)


def test_static_forces_external_wrench(robot, state):
    """A wrench on the base link only loads the base coordinates."""
    no_gravity = jnp.zeros(3)
    wrenches = jnp.zeros((robot.num_links, 6)).at[0, 2].set(5.0)
    tau = dynamics.static_forces(robot, state, no_gravity, wrenches)
    np.testing.assert_allclose(tau[:3], jnp.array([0.0, 0.0, -5.0]), atol=1e-12)
    np.testing.assert_allclose(tau[6:], jnp.zeros(robot.num_dofs), atol=1e-12)


def test_static_forces_joints_derivative(robot, state):
    gravity = jnp.array([0.0, 0.0, -9.81])
    wrenches = jnp.zeros((robot.num_links, 6)).at[robot.link_index("r_foot")].set(
        jnp.array([0.0, 0.0, 100.0, 0.0, 1.0, 0.0]))
    d_tau = dynamics.static_forces_joints_derivative(robot, state, gravity, wrenches)
    assert d_tau.shape == (6 + robot.num_dofs, robot.num_dofs)
    eps = 1e-6
    for i in range(robot.num_dofs):
        numerical = (dynamics.static_forces(robot, _shift_joints(state, i, eps), gravity, wrenches)
                     - dynamics.static_forces(robot, _shift_joints(state, i, -eps), gravity, wrenches)) / (2 * eps)
        np.testing.assert_allclose(d_tau[:, i], numerical, atol=1e-6)
