"""Kinematics/dynamics evaluator holding one robot state at a time.

``KinDynEvaluator`` is the backend that state caches wrap. It stores the last
state given to ``update_state`` and answers queries about it. Results are
memoised in private scratch buffers that are dropped on every state update,
so repeated queries at one state return the very same arrays.

Unsupported requests (e.g. a velocity representation an accessor does not
implement) return ``None`` instead of raising. Invalid states make
``update_state`` return ``False`` and leave the previous state in place.
"""

from logging import getLogger
from typing import Callable, Dict, Hashable, Mapping, Optional, Protocol

import jax.numpy as jnp
import numpy as np
from jax import Array

from . import chain, dynamics
from .config import DEFAULT_GRAVITY, DEFAULT_QUATERNION_NORM_TOLERANCE
from .core import RobotModel, RobotState
from .dynamics import VelocityRepresentation
from .io import load_urdf

logger = getLogger(__name__)

_BODY = VelocityRepresentation.BODY_FIXED
_MIXED = VelocityRepresentation.MIXED


class KinDynBackend(Protocol):
    """Capability interface consumed by the caches and the expression graph."""

    def load_model(self, model: RobotModel) -> bool: ...

    def is_valid(self) -> bool: ...

    def set_floating_base(self, frame: str) -> bool: ...

    @property
    def model(self) -> RobotModel: ...

    def update_state(self, state: RobotState) -> bool: ...

    def same_state(self, state: RobotState, tolerance: float) -> bool: ...


class KinDynEvaluator:
    """Floating-base kinematics and dynamics on top of ``chain``/``dynamics``.

    Frames are the links of the model, addressed by name.

    Args:
        model: robot model to load, optional (see ``load_model``)
        gravity: gravity vector in the inertial frame
        quaternion_norm_tolerance: states whose raw base quaternion norm
            differs from one by more than this are rejected
    """

    def __init__(self, model: Optional[RobotModel] = None, gravity=DEFAULT_GRAVITY,
                 quaternion_norm_tolerance: float = DEFAULT_QUATERNION_NORM_TOLERANCE):
        self._model: Optional[RobotModel] = None
        self._gravity = jnp.array(gravity, dtype=float)
        self._quaternion_norm_tolerance = quaternion_norm_tolerance
        self._state: Optional[RobotState] = None
        self._buffers: Dict[Hashable, Optional[Array]] = {}
        if model is not None and not self.load_model(model):
            raise ValueError("Invalid robot model")

    @classmethod
    def from_urdf(cls, urdf_path: str, **kwargs) -> "KinDynEvaluator":
        return cls(load_urdf(urdf_path), **kwargs)

    # Setup

    def load_model(self, model: RobotModel) -> bool:
        if model.num_links == 0:
            logger.error("Cannot load a model without links")
            return False
        self._model = model
        self._state = None
        self._buffers.clear()
        return True

    def is_valid(self) -> bool:
        return self._model is not None

    def set_floating_base(self, frame: str) -> bool:
        """Make ``frame`` the floating base.

        The base pose and velocities of subsequent states refer to this link,
        and so do the base-relative quantities (``com_in_base``, the base
        columns of free-floating Jacobians). Returns False, leaving the model
        unchanged, if no model is loaded or the link does not exist.
        """
        if self._model is None or not self._model.has_link(frame):
            logger.warning("Cannot use '%s' as floating base", frame)
            return False
        self._model = self._model.with_floating_base(frame)
        self._buffers.clear()
        return True

    @property
    def floating_base(self) -> str:
        return self.model.base_link

    @property
    def model(self) -> RobotModel:
        if self._model is None:
            raise ValueError("No robot model loaded")
        return self._model

    @property
    def gravity(self) -> Array:
        return self._gravity

    @gravity.setter
    def gravity(self, value) -> None:
        # static forces are not memoised, so no buffer depends on gravity
        self._gravity = jnp.array(value, dtype=float)

    @property
    def current_state(self) -> Optional[RobotState]:
        return self._state

    # State

    def same_state(self, state: RobotState, tolerance: float) -> bool:
        return self._state is not None and self._state.is_close(state, tolerance)

    def update_state(self, state: RobotState) -> bool:
        if not self.is_valid():
            logger.warning("update_state called without a loaded model")
            return False
        if not self._check_state(state):
            return False
        self._state = state.copy()
        self._buffers.clear()
        # Link poses are needed by almost every accessor
        self._link_transforms()
        return True

    def _check_state(self, state: RobotState) -> bool:
        n = self._model.num_dofs
        expected = {
            "base_position": (3,),
            "base_quaternion": (4,),
            "joints_position": (n,),
            "base_linear_velocity": (3,),
            "base_quaternion_velocity": (4,),
            "joints_velocity": (n,),
        }
        for name, shape in expected.items():
            value = np.asarray(getattr(state, name))
            if value.shape != shape:
                logger.warning("State field %s has shape %s, expected %s", name, value.shape, shape)
                return False
            if not np.all(np.isfinite(value)):
                logger.warning("State field %s contains non-finite values", name)
                return False
        norm = float(np.linalg.norm(np.asarray(state.base_quaternion)))
        if abs(norm - 1.0) > self._quaternion_norm_tolerance:
            logger.warning("Base quaternion norm %g is outside 1 +/- %g",
                           norm, self._quaternion_norm_tolerance)
            return False
        return True

    def _memo(self, key: Hashable, compute: Callable[[], Optional[Array]]) -> Optional[Array]:
        if self._state is None:
            raise ValueError("No state has been set on the evaluator")
        if key not in self._buffers:
            self._buffers[key] = compute()
        return self._buffers[key]

    def _index(self, frame: str) -> int:
        return self.model.link_index(frame)

    # Kinematics

    def base_transform(self) -> Array:
        """World pose of the floating base."""
        return self._link_transforms()[self._model.floating_base_idx]

    def world_transform(self, frame: str) -> Array:
        return self._link_transforms()[self._index(frame)]

    def relative_transform(self, base_frame: str, target_frame: str) -> Array:
        base_idx, target_idx = self._index(base_frame), self._index(target_frame)
        return self._memo(
            ("relative_transform", base_idx, target_idx),
            lambda: chain.relative_transform(self._model, self._state.joints_position,
                                             base_idx, target_idx))

    def frame_jacobian(self, frame: str,
                       representation: VelocityRepresentation = _MIXED) -> Optional[Array]:
        """(6, 6+n) free-floating Jacobian of ``frame``."""
        idx = self._index(frame)

        def compute():
            J_body = self._link_body_jacobians()[idx]
            T_world_frame = self.world_transform(frame)
            Y = dynamics.output_velocity_map(representation, T_world_frame)
            X = dynamics.generalized_velocity_map(representation, self.base_transform(),
                                                  self._model.num_dofs)
            return Y @ J_body @ X

        return self._memo(("frame_jacobian", idx, representation), compute)

    def relative_left_jacobian(self, base_frame: str, target_frame: str,
                               representation: VelocityRepresentation = _BODY,
                               order: int = 0) -> Optional[Array]:
        """Body-fixed relative Jacobian (6, n), or its ``order``-th joint derivative."""
        base_idx, target_idx = self._index(base_frame), self._index(target_frame)
        if representation is not _BODY:
            return None

        def compute():
            joints = self._state.joints_position
            if order == 0:
                return chain.relative_left_jacobian(self._model, joints, base_idx, target_idx)
            return chain.relative_left_jacobian_derivative(self._model, joints, base_idx,
                                                           target_idx, order=order)

        return self._memo(("relative_left_jacobian", base_idx, target_idx, order), compute)

    def frame_velocity(self, frame: str,
                       representation: VelocityRepresentation = _MIXED) -> Array:
        idx = self._index(frame)

        def compute():
            twist = dynamics.frame_body_velocity(self._model, self._state, idx)
            return dynamics.output_velocity_map(representation, self.world_transform(frame)) @ twist

        return self._memo(("frame_velocity", idx, representation), compute)

    def frame_velocity_joints_derivative(self, frame: str,
                                         representation: VelocityRepresentation = _BODY
                                         ) -> Optional[Array]:
        """(6, n) joint derivative of the frame velocity; body-fixed only."""
        idx = self._index(frame)
        if representation is not _BODY:
            return None
        return self._memo(
            ("frame_velocity_joints_derivative", idx),
            lambda: dynamics.frame_velocity_joints_derivative(self._model, self._state, idx))

    def relative_velocity(self, base_frame: str, target_frame: str) -> Array:
        """Twist of ``target_frame`` relative to ``base_frame``, in ``target_frame``."""
        base_idx, target_idx = self._index(base_frame), self._index(target_frame)
        return self._memo(
            ("relative_velocity", base_idx, target_idx),
            lambda: self.relative_left_jacobian(base_frame, target_frame) @ self._state.joints_velocity)

    # Centre of mass

    def com_position(self) -> Array:
        return self._memo("com_position", lambda: dynamics.com_position(self._model, self._state))

    def com_jacobian(self, representation: VelocityRepresentation = _MIXED) -> Optional[Array]:
        if representation not in (_BODY, _MIXED):
            return None
        return self._memo(("com_jacobian", representation),
                          lambda: dynamics.com_jacobian(self._model, self._state, representation))

    def com_in_base(self, order: int = 0) -> Array:
        """CoM in base frame (3,), or its ``order``-th joint derivative."""
        def compute():
            joints = self._state.joints_position
            if order == 0:
                return dynamics.com_in_base(self._model, joints)
            return dynamics.com_in_base_derivative(self._model, joints, order=order)

        return self._memo(("com_in_base", order), compute)

    # Momentum and mass matrix

    def linear_angular_momentum(self, representation: VelocityRepresentation = _MIXED) -> Array:
        return self._memo(
            ("momentum", representation),
            lambda: dynamics.linear_angular_momentum(self._model, self._state, representation))

    def momentum_jacobian(self, representation: VelocityRepresentation = _MIXED) -> Array:
        return self._memo(
            ("momentum_jacobian", representation),
            lambda: dynamics.momentum_jacobian(self._model, self._state, representation))

    def momentum_joints_derivative(self, representation: VelocityRepresentation = _BODY
                                   ) -> Optional[Array]:
        """(6, n) joint derivative of the momentum; body-fixed only."""
        if representation is not _BODY:
            return None
        return self._memo("momentum_joints_derivative",
                          lambda: dynamics.momentum_joints_derivative(self._model, self._state))

    def mass_matrix(self, representation: VelocityRepresentation = _MIXED) -> Array:
        return self._memo(("mass_matrix", representation),
                          lambda: dynamics.mass_matrix(self._model, self._state, representation))

    # Static forces

    def static_forces(self, link_wrenches: Optional[Mapping[str, Array]] = None) -> Array:
        """Generalized forces balancing gravity and body-frame external link wrenches."""
        wrenches = self._wrench_array(link_wrenches)
        return dynamics.static_forces(self._model, self._checked_state(), self._gravity, wrenches)

    def static_forces_joints_derivative(self, link_wrenches: Optional[Mapping[str, Array]] = None
                                        ) -> Array:
        wrenches = self._wrench_array(link_wrenches)
        return dynamics.static_forces_joints_derivative(self._model, self._checked_state(),
                                                        self._gravity, wrenches)

    def _wrench_array(self, link_wrenches: Optional[Mapping[str, Array]]) -> Array:
        wrenches = jnp.zeros((self.model.num_links, 6))
        for frame, wrench in (link_wrenches or {}).items():
            wrenches = wrenches.at[self._index(frame)].add(jnp.asarray(wrench, dtype=float))
        return wrenches

    def _checked_state(self) -> RobotState:
        if self._state is None:
            raise ValueError("No state has been set on the evaluator")
        return self._state

    def _link_transforms(self) -> Array:
        return self._memo("link_transforms",
                          lambda: dynamics.link_world_transforms(self._model, self._state))

    def _link_body_jacobians(self) -> Array:
        return self._memo("link_body_jacobians",
                          lambda: dynamics.link_body_jacobians(self._model, self._state.joints_position))


__all__ = ["KinDynBackend", "KinDynEvaluator", "VelocityRepresentation"]
