"""Tests for the SO(3), SE(3) and quaternion helpers."""

import jax
import jax.numpy as jnp
import numpy as np
from hypothesis import given, settings
from hypothesis import strategies as st

from jax_shared_kindyn.transforms import quaternion, se3, so3


def _random_quaternion(seed):
    q = jax.random.uniform(jax.random.PRNGKey(seed), (4,), minval=-1.0, maxval=1.0)
    return q / jnp.linalg.norm(q)


def _random_transform(seed):
    key1, key2 = jax.random.split(jax.random.PRNGKey(seed))
    q = jax.random.normal(key1, (4,))
    p = jax.random.normal(key2, (3,))
    return se3.from_position_and_rotation(p, quaternion.to_rotation_matrix(q))


def test_identity_quaternion_to_matrix():
    R = quaternion.unit_to_rotation_matrix(jnp.array([1.0, 0.0, 0.0, 0.0]))
    np.testing.assert_allclose(R, jnp.eye(3), atol=1e-12)


def test_matrix_to_quaternion_identity():
    q = quaternion.from_rotation_matrix(jnp.eye(3))
    np.testing.assert_allclose(q, jnp.array([1.0, 0.0, 0.0, 0.0]), atol=1e-12)


def test_rotation_about_z():
    angle = 0.7
    q = jnp.array([jnp.cos(angle / 2), 0.0, 0.0, jnp.sin(angle / 2)])
    expected = jnp.array([
        [jnp.cos(angle), -jnp.sin(angle), 0.0],
        [jnp.sin(angle), jnp.cos(angle), 0.0],
        [0.0, 0.0, 1.0],
    ])
    np.testing.assert_allclose(quaternion.unit_to_rotation_matrix(q), expected, atol=1e-12)


def test_to_rotation_matrix_normalizes():
    q = jnp.array([0.9, 0.1, -0.2, 0.3])
    np.testing.assert_allclose(quaternion.to_rotation_matrix(3.0 * q),
                               quaternion.unit_to_rotation_matrix(quaternion.normalize(q)),
                               atol=1e-12)


@given(st.integers(min_value=0, max_value=100))
@settings(deadline=None, max_examples=25)
def test_quaternion_roundtrip(seed):
    """quaternion -> matrix -> quaternion gives back q or -q."""
    q = _random_quaternion(seed)
    q2 = quaternion.from_rotation_matrix(quaternion.unit_to_rotation_matrix(q))
    assert q2[0] >= 0.0
    assert jnp.abs(jnp.dot(q, q2)) > 1.0 - 1e-9


@given(st.integers(min_value=0, max_value=100))
@settings(deadline=None, max_examples=25)
def test_multiply_matches_rotation_composition(seed):
    q1 = _random_quaternion(seed)
    q2 = _random_quaternion(seed + 1000)
    R = quaternion.unit_to_rotation_matrix(quaternion.multiply(q1, q2))
    expected = quaternion.unit_to_rotation_matrix(q1) @ quaternion.unit_to_rotation_matrix(q2)
    np.testing.assert_allclose(R, expected, atol=1e-10)


def test_error_quaternion_is_identity_for_equal_orientations():
    q = _random_quaternion(3)
    error = quaternion.error_quaternion(q, q)
    np.testing.assert_allclose(jnp.abs(error), jnp.array([1.0, 0.0, 0.0, 0.0]), atol=1e-12)


def test_normalized_derivative_matches_autodiff():
    q = jnp.array([1.1, 0.2, -0.3, 0.4])
    np.testing.assert_allclose(quaternion.normalized_derivative(q),
                               jax.jacfwd(quaternion.normalize)(q), atol=1e-12)


def test_left_trivialized_maps():
    """G maps body angular velocity to the quaternion rate, and G^-1 undoes it."""
    q = _random_quaternion(7)
    omega = jnp.array([0.3, -0.5, 0.2])
    G = quaternion.left_trivialized_derivative(q)
    G_inv = quaternion.left_trivialized_derivative_inverse(q)
    np.testing.assert_allclose(G_inv @ G, jnp.eye(3), atol=1e-12)

    # R_dot = R [omega] for a body-fixed angular velocity
    R_dot = jax.jacfwd(quaternion.unit_to_rotation_matrix)(q) @ (G @ omega)
    np.testing.assert_allclose(R_dot, quaternion.unit_to_rotation_matrix(q) @ so3.skew_symmetric(omega),
                               atol=1e-10)


def test_left_trivialized_times_omega_jacobian():
    q = _random_quaternion(11)
    omega = jnp.array([0.1, 0.2, -0.4])
    expected = jax.jacfwd(lambda x: quaternion.left_trivialized_derivative(x) @ omega)(q)
    np.testing.assert_allclose(quaternion.left_trivialized_derivative_times_omega_jacobian(omega),
                               expected, atol=1e-12)


def test_conjugate_derivative():
    q = _random_quaternion(5)
    np.testing.assert_allclose(quaternion.conjugate_derivative(),
                               jax.jacfwd(quaternion.conjugate)(q), atol=1e-12)


def test_rotated_vector_jacobian_shape():
    J = quaternion.rotated_vector_jacobian(jnp.array([1.0, 2.0, 3.0]), _random_quaternion(2))
    assert J.shape == (3, 4)


def test_bounds_respected():
    assert quaternion.bounds_respected(jnp.array([1.0, 0.0, 0.0, 0.0]))
    assert not quaternion.bounds_respected(jnp.array([1.5, 0.0, 0.0, 0.0]))
    assert not quaternion.bounds_respected(jnp.array([0.5, -1.2, 0.0, 0.0]))


def test_so3_skew_symmetric():
    v = jnp.array([1.0, 2.0, 3.0])
    u = jnp.array([-0.5, 0.1, 0.7])
    K = so3.skew_symmetric(v)
    np.testing.assert_allclose(K, -K.T)
    np.testing.assert_allclose(K @ u, jnp.cross(v, u), atol=1e-12)
    np.testing.assert_allclose(so3.vee(K), v)


def test_so3_batch_operations():
    vs = jnp.arange(12.0).reshape(4, 3)
    Ks = so3.skew_symmetric(vs)
    assert Ks.shape == (4, 3, 3)
    np.testing.assert_allclose(so3.vee(Ks), vs)


def test_so3_from_rpy_matches_axis_rotations():
    R = so3.from_rpy(jnp.array([0.0, 0.0, jnp.pi / 2]))
    np.testing.assert_allclose(R @ jnp.array([1.0, 0.0, 0.0]), jnp.array([0.0, 1.0, 0.0]), atol=1e-12)


@given(st.integers(min_value=0, max_value=100))
@settings(deadline=None, max_examples=25)
def test_transform_inverse_property(seed):
    T = _random_transform(seed)
    np.testing.assert_allclose(se3.multiply(T, se3.inverse(T)), jnp.eye(4), atol=1e-10)


def test_se3_apply_multiple_points():
    T = _random_transform(1)
    points = jnp.arange(9.0).reshape(3, 3)
    moved = se3.apply(T, points)
    for i in range(3):
        expected = T[:3, :3] @ points[i] + T[:3, 3]
        np.testing.assert_allclose(moved[i], expected, atol=1e-12)


def test_se3_adjoint_maps_twists():
    """Ad(T) V is the twist of the same motion seen from the outer frame."""
    T = _random_transform(4)
    twist = jnp.array([0.1, -0.2, 0.3, 0.4, 0.5, -0.6])
    # Motion T(eps) = T exp(eps [V]); its outer frame twist is the log of T_dot T^-1
    hat = jnp.zeros((4, 4)).at[:3, :3].set(so3.skew_symmetric(twist[3:])).at[:3, 3].set(twist[:3])
    outer = T @ hat @ se3.inverse(T)
    expected = jnp.concatenate([outer[:3, 3], so3.vee(outer[:3, :3])])
    np.testing.assert_allclose(se3.adjoint(T) @ twist, expected, atol=1e-10)


def test_se3_adjoint_wrench_is_inverse_transpose():
    T = _random_transform(9)
    np.testing.assert_allclose(se3.adjoint_wrench(T), jnp.linalg.inv(se3.adjoint(T)).T, atol=1e-10)


def test_local_twist_of_constant_rate():
    T = _random_transform(6)
    twist = jnp.array([0.3, 0.0, -0.1, 0.0, 0.2, 0.1])
    hat = jnp.zeros((4, 4)).at[:3, :3].set(so3.skew_symmetric(twist[3:])).at[:3, 3].set(twist[:3])
    np.testing.assert_allclose(se3.local_twist(T, T @ hat), twist, atol=1e-10)


def test_se3_jit_compatibility():
    T = _random_transform(2)
    np.testing.assert_allclose(jax.jit(se3.inverse)(T), se3.inverse(T), atol=1e-12)
    np.testing.assert_allclose(jax.jit(se3.adjoint)(T), se3.adjoint(T), atol=1e-12)
