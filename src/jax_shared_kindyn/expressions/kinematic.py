"""Expression nodes whose values come from the cached kinematics evaluator.

These nodes have no operands. Their values are read from the ``StateCache``
the registry currently points at, and their derivatives are written in closed
form in terms of other registry nodes. Derivative builders look those nodes
up through the registry by key; nodes only hold a weak proxy to the registry,
so a derivative that refers back to its own node does not keep the registry
alive.
"""

import weakref
from logging import getLogger
from typing import Iterable

import jax.numpy as jnp
from jax import Array

from ..dynamics import VelocityRepresentation
from ..errors import EvaluatorFailure
from ..transforms import quaternion
from .graph import Expression, Function, Variable
from .quaternion import left_trivialized_map

logger = getLogger(__name__)

JOINTS_POSITION = "joints_position"
JOINTS_VELOCITY = "joints_velocity"


class EvaluatorNode(Expression):
    """Node evaluated by querying the registry's current state cache.

    ``dependencies`` names the state variables the queried quantity is a
    function of; the node is recomputed only when one of them is reloaded.
    """

    def __init__(self, registry, name: str, shape, dependencies: Iterable[str]):
        super().__init__(name, shape, (), clock=registry.clock)
        self._registry = weakref.proxy(registry)
        self._leaves = {leaf: registry.variable(leaf) for leaf in dependencies}

    def _compute(self) -> Array:
        value = self._query(self._registry.current_cache)
        if value is None:
            raise EvaluatorFailure(f"The evaluator could not compute '{self.name}'")
        return jnp.asarray(value)

    def _query(self, cache):
        raise NotImplementedError

    def _joints(self) -> Variable:
        return self._registry.variable(JOINTS_POSITION)


class _FramePairNode(EvaluatorNode):

    def __init__(self, registry, kind: str, base_frame: str, target_frame: str, shape,
                 dependencies=(JOINTS_POSITION,)):
        super().__init__(registry, f"{kind}({base_frame}, {target_frame})", shape, dependencies)
        self.base_frame = base_frame
        self.target_frame = target_frame


class RelativePosition(_FramePairNode):
    """Origin of ``target_frame`` expressed in ``base_frame``."""

    def __init__(self, registry, base_frame: str, target_frame: str):
        super().__init__(registry, "relative_position", base_frame, target_frame, (3,))

    def _query(self, cache):
        return cache.relative_transform(self.base_frame, self.target_frame)[:3, 3]

    def _build_derivative(self, variable: Variable) -> Expression:
        # The linear rows of the body-fixed Jacobian are in target coordinates
        rotation = self._registry.get("relative_rotation", self.base_frame, self.target_frame)
        jacobian = self._registry.get("relative_left_jacobian", self.base_frame, self.target_frame)
        return Function(lambda R, J: R @ J[:3], (rotation, jacobian),
                        name=f"d{self.name}/d{variable.name}")


class RelativeQuaternion(_FramePairNode):
    """Unit quaternion (w >= 0) of the rotation from ``base_frame`` to ``target_frame``."""

    def __init__(self, registry, base_frame: str, target_frame: str):
        super().__init__(registry, "relative_quaternion", base_frame, target_frame, (4,))

    def _query(self, cache):
        transform = cache.relative_transform(self.base_frame, self.target_frame)
        return quaternion.from_rotation_matrix(transform[:3, :3])

    def _build_derivative(self, variable: Variable) -> Expression:
        # q_dot = G(q) omega with omega the angular rows of the body Jacobian.
        # The resulting expression refers to this node.
        jacobian = self._registry.get("relative_left_jacobian", self.base_frame, self.target_frame)
        return left_trivialized_map(self) @ jacobian[3:]


class RelativeLeftJacobian(_FramePairNode):
    """Body-fixed relative Jacobian (order 0) or its ``order``-th joint derivative."""

    def __init__(self, registry, base_frame: str, target_frame: str, order: int = 0):
        n = registry.model.num_dofs
        super().__init__(registry, "relative_left_jacobian", base_frame, target_frame,
                         (6, n) + (n,) * order)
        self.order = order
        if order:
            self.name = f"{self.name}^({order})"

    def _query(self, cache):
        return cache.relative_left_jacobian(self.base_frame, self.target_frame,
                                            VelocityRepresentation.BODY_FIXED, self.order)

    def _build_derivative(self, variable: Variable) -> Expression:
        return self._registry.get("relative_left_jacobian", self.base_frame, self.target_frame,
                                  self.order + 1)


class RelativeVelocity(_FramePairNode):
    """Twist of ``target_frame`` relative to ``base_frame``, in ``target_frame``: J(s) s_dot."""

    def __init__(self, registry, base_frame: str, target_frame: str):
        super().__init__(registry, "relative_velocity", base_frame, target_frame, (6,),
                         dependencies=(JOINTS_POSITION, JOINTS_VELOCITY))

    def _query(self, cache):
        return cache.relative_velocity(self.base_frame, self.target_frame)

    def _build_derivative(self, variable: Variable) -> Expression:
        return self._product().derivative(variable)

    def _product(self) -> Expression:
        product = self._partials.get("product")
        if product is None:
            jacobian = self._registry.get("relative_left_jacobian", self.base_frame, self.target_frame)
            velocity = self._registry.variable(JOINTS_VELOCITY)
            product = Function(lambda J, v: J @ v, (jacobian, velocity), name=self.name)
            self._partials["product"] = product
        return product


class CoMInBase(EvaluatorNode):
    """Centre of mass in the base frame (order 0) or its ``order``-th joint derivative."""

    def __init__(self, registry, order: int = 0):
        n = registry.model.num_dofs
        name = "com_in_base" if not order else f"com_in_base^({order})"
        super().__init__(registry, name, (3,) + (n,) * order, (JOINTS_POSITION,))
        self.order = order

    def _query(self, cache):
        return cache.com_in_base(self.order)

    def _build_derivative(self, variable: Variable) -> Expression:
        return self._registry.get("com_in_base", self.order + 1)
