"""Shared fixtures: the two-legged test robot, evaluators and sample states."""

from pathlib import Path

import jax.numpy as jnp
import pytest

from jax_shared_kindyn.core import RobotState
from jax_shared_kindyn.evaluator import KinDynEvaluator
from jax_shared_kindyn.io import load_urdf

URDF_PATH = Path(__file__).parent / "fixtures" / "simple_legged.urdf"


def sample_state(num_dofs: int = 6, scale: float = 1.0, quaternion_scale: float = 1.0) -> RobotState:
    """A generic state with non-trivial orientation and velocities.

    ``quaternion_scale`` multiplies the unit base quaternion to produce a raw,
    non-unit one.
    """
    quaternion = jnp.array([0.9, 0.1, -0.2, 0.3])
    quaternion = quaternion_scale * quaternion / jnp.linalg.norm(quaternion)
    joints = scale * jnp.linspace(-0.4, 0.6, num_dofs)
    return RobotState.from_arrays(
        base_position=[0.1, -0.2, 0.8],
        base_quaternion=quaternion,
        joints_position=joints,
        base_linear_velocity=[0.3, -0.1, 0.05],
        base_quaternion_velocity=[0.01, 0.2, -0.1, 0.05],
        joints_velocity=jnp.linspace(0.5, -0.5, num_dofs),
    )


@pytest.fixture(scope="session")
def robot():
    return load_urdf(str(URDF_PATH))


@pytest.fixture
def evaluator(robot):
    return KinDynEvaluator(robot)


@pytest.fixture
def state(robot):
    return sample_state(robot.num_dofs)


@pytest.fixture(scope="session")
def make_state():
    return sample_state
