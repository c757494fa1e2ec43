"""ExpressionRegistry: one shared node per derived quantity.

The registry is the single owner of long-lived expression nodes. Nodes are
keyed by ``ExpressionKey(kind, args)``, e.g.
``ExpressionKey("relative_position", ("base_link", "l_foot"))``, built lazily
by a builder registered for ``kind`` and returned as the same instance on
every later request. Builders may request other nodes from the registry, so
shared sub-expressions (and their derivative caches) are reused across every
consumer.

Example:
    >>> caches = TimeIndexedCacheSet(evaluator, times=[0.0, 0.1, 0.2])
    >>> registry = ExpressionRegistry(caches)
    >>> registry.update_state(0.1, state)
    True
    >>> foot = registry.get("relative_position", "base_link", "l_foot")
    >>> registry.evaluate(foot)
    >>> registry.derivative(foot, "joints_position").evaluate()

Dirty detection uses one token, ``(cache index, cache generation)``. Whenever
it differs from the token the leaf variables were loaded at (a new state, a
different time sample, or a cache updated outside the registry) the leaves
are reloaded, so every node depending on them recomputes at most once per
state. Setting any other variable only invalidates the nodes built on it.
"""

import inspect
from logging import getLogger
from typing import Callable, Dict, Hashable, List, NamedTuple, Optional, Tuple, Union

from ..cache import StateCache, TimeIndexedCacheSet
from ..core import RobotModel, RobotState
from ..errors import (
    EvaluatorFailure,
    ExpressionCycleError,
    UninitializedStateError,
    UnknownExpressionError,
    UnknownVariableError,
    VectorSizeError,
)
from ..transforms import se3
from . import quaternion as quaternion_expressions
from .graph import Expression, Function, Generation, Variable
from .kinematic import CoMInBase, RelativeLeftJacobian, RelativePosition, RelativeQuaternion, RelativeVelocity

logger = getLogger(__name__)

Builder = Callable[..., Expression]


class ExpressionKey(NamedTuple):
    """Structural identity of a node: a kind plus its arguments."""

    kind: str
    args: Tuple[Hashable, ...] = ()


# Leaf variables loaded from every state, with their dimension (None: num_dofs)
_STATE_VARIABLES = (
    ("base_position", 3),
    ("base_quaternion", 4),
    ("joints_position", None),
    ("base_linear_velocity", 3),
    ("base_quaternion_velocity", 4),
    ("joints_velocity", None),
)


class ExpressionRegistry:
    """Keyed store of expression nodes evaluated against shared state caches.

    Args:
        caches: a ``TimeIndexedCacheSet``, or a single ``StateCache`` for
            problems without time samples (the time argument is then ignored)
    """

    def __init__(self, caches: Union[TimeIndexedCacheSet, StateCache]):
        self._caches = caches
        self._clock = Generation(refresh=self._refresh)
        self._variables: Dict[str, Variable] = {}
        self._nodes: Dict[ExpressionKey, Expression] = {}
        self._builders: Dict[str, Builder] = dict(_BUILTIN_BUILDERS)
        self._building: List[ExpressionKey] = []

        self._time: Optional[float] = None
        self._index: Optional[int] = None
        self._cache: Optional[StateCache] = None
        self._loaded_token = None

        num_dofs = self.model.num_dofs
        for name, dimension in _STATE_VARIABLES:
            self.variable(name, num_dofs if dimension is None else dimension)

    # State

    def update_state(self, time: float, state: RobotState) -> bool:
        """Push ``state`` into the cache of ``time`` and make it current.

        Returns False, leaving the current cache unchanged, if the evaluator
        rejects the state.
        """
        index, cache = self._resolve_cache(time)
        if not cache.update(state).ok:
            logger.warning("State update at time %s failed", time)
            return False
        self._time = time
        self._index = index
        self._cache = cache
        self._refresh()
        return True

    def _resolve_cache(self, time: float) -> Tuple[int, StateCache]:
        if isinstance(self._caches, StateCache):
            return 0, self._caches
        index = self._caches.index(time)
        return index, self._caches[index]

    def _refresh(self) -> None:
        if self._cache is None:
            return
        token = (self._index, self._cache.generation)
        if token == self._loaded_token:
            return
        state = self._cache.state
        for name, _ in _STATE_VARIABLES:
            self._variables[name].set_value(getattr(state, name))
        self._loaded_token = token
        logger.debug("Expression variables reloaded for sample %s, generation %s", *token)

    @property
    def current_cache(self) -> StateCache:
        if self._cache is None:
            raise UninitializedStateError("update_state has not been called yet")
        return self._cache

    @property
    def current_state(self) -> RobotState:
        return self.current_cache.state

    @property
    def time(self) -> Optional[float]:
        return self._time

    @property
    def model(self) -> RobotModel:
        return self._caches.model

    @property
    def base_frame(self) -> str:
        """Floating base of the model, read by builders when a node is built."""
        return self.model.base_link

    @property
    def clock(self) -> Generation:
        return self._clock

    @property
    def generation(self) -> int:
        return self._clock.token

    # Nodes

    def register_builder(self, kind: str, builder: Builder) -> None:
        """Add a builder ``builder(registry, *args) -> Expression`` for ``kind``."""
        if kind in self._builders:
            raise ValueError(f"A builder for '{kind}' is already registered")
        self._builders[kind] = builder

    def get(self, kind: Union[str, ExpressionKey], *args, builder: Optional[Builder] = None) -> Expression:
        """Node for a key, built on first request.

        Args:
            kind: expression kind, or a complete ``ExpressionKey``
            args: key arguments, e.g. frame names; omitted trailing arguments
                take the builder's defaults
            builder: used instead of the registered builder for ``kind``

        Raises:
            UnknownExpressionError: no node and no builder exist for the key,
                or the arguments do not match the builder signature
            ExpressionCycleError: building the node requires the node itself
        """
        if isinstance(kind, ExpressionKey):
            kind, args = kind.kind, tuple(kind.args) + args

        make = builder or self._builders.get(kind)
        if make is not None:
            args = _normalize_args(make, self, args)
        key = ExpressionKey(kind, tuple(args))

        node = self._nodes.get(key)
        if node is not None:
            return node
        if make is None:
            raise UnknownExpressionError(f"No expression registered for {key}")
        if key in self._building:
            cycle = " -> ".join(str(k) for k in self._building + [key])
            logger.error("Cyclic expression construction: %s", cycle)
            raise ExpressionCycleError(f"Cyclic expression construction: {cycle}")

        self._building.append(key)
        try:
            node = make(self, *key.args)
        finally:
            self._building.pop()

        if node.key is None:
            node.key = key
        self._nodes[key] = node
        logger.debug("Built expression %s", key)
        return node

    def __contains__(self, key: ExpressionKey) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def keys(self) -> List[ExpressionKey]:
        return list(self._nodes)

    def check_frames(self, *frames: str) -> None:
        """Raise UnknownFrameError for any frame missing from the model."""
        for frame in frames:
            self.model.link_index(frame)

    # Variables

    def variable(self, name: str, dimension: Optional[int] = None) -> Variable:
        """Leaf variable ``name``; created when ``dimension`` is given and it does not exist."""
        existing = self._variables.get(name)
        if existing is not None:
            if dimension is not None and dimension != existing.dimension:
                raise VectorSizeError(
                    f"Variable '{name}' has dimension {existing.dimension}, not {dimension}")
            return existing
        if dimension is None:
            raise UnknownVariableError(f"Unknown variable '{name}'")
        created = Variable(name, dimension, clock=self._clock)
        self._variables[name] = created
        return created

    def set_variable(self, name: str, value) -> None:
        self.variable(name).set_value(value)

    def _resolve_variable(self, variable: Union[str, Variable]) -> Variable:
        name = variable.name if isinstance(variable, Variable) else variable
        registered = self._variables.get(name)
        if registered is None or (isinstance(variable, Variable) and variable is not registered):
            raise UnknownVariableError(f"Variable '{name}' is not registered in this registry")
        return registered

    # Evaluation and differentiation

    def evaluate(self, node: Expression):
        """Current value of ``node``, or None if the evaluator could not compute it."""
        try:
            return node.evaluate()
        except EvaluatorFailure as e:
            logger.warning("Evaluation of %s failed: %s", node.name, e)
            return None

    def derivative(self, node: Expression, variable: Union[str, Variable]) -> Expression:
        return node.derivative(self._resolve_variable(variable))

    def second_derivative(self, node: Expression, first: Union[str, Variable],
                          second: Union[str, Variable, None] = None) -> Expression:
        """Derivative with respect to ``first`` then ``second`` (default: ``first`` again)."""
        first_derivative = self.derivative(node, first)
        return self.derivative(first_derivative, second if second is not None else first)

    def clear_derivative_cache(self, node: Optional[Expression] = None) -> None:
        nodes = [node] if node is not None else list(self._nodes.values()) + list(self._variables.values())
        for item in nodes:
            item.clear_derivative_cache()

    def close(self) -> None:
        """Break the reference cycles held by derivative caches and drop every node."""
        self.clear_derivative_cache()
        self._nodes.clear()

    def __enter__(self) -> "ExpressionRegistry":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _normalize_args(builder: Builder, registry: ExpressionRegistry, args: tuple) -> tuple:
    """Fill in builder defaults so that equivalent requests share one key."""
    try:
        bound = inspect.signature(builder).bind(registry, *args)
    except TypeError as e:
        name = getattr(builder, "__name__", repr(builder))
        raise UnknownExpressionError(f"Invalid arguments {args} for builder '{name}': {e}") from e
    bound.apply_defaults()
    return tuple(bound.arguments.values())[1:]


# Built-in builders

def _state_variable(name: str) -> Builder:
    def build(registry: ExpressionRegistry) -> Expression:
        return registry.variable(name)
    build.__name__ = name
    return build


def _normalized_base_quaternion(registry):
    return quaternion_expressions.normalized_quaternion(
        registry.get("base_quaternion"), name="normalized_base_quaternion")


def _base_rotation(registry):
    return quaternion_expressions.rotation_from_quaternion(
        registry.get("normalized_base_quaternion"), name="base_rotation")


def _base_twist(registry):
    return quaternion_expressions.body_twist_from_quaternion_velocity(
        registry.get("base_linear_velocity"),
        registry.get("base_quaternion_velocity"),
        registry.get("normalized_base_quaternion"),
        name="base_twist")


def _world_to_base(registry):
    return Function(se3.from_position_and_rotation,
                    (registry.get("base_position"), registry.get("base_rotation")),
                    name="world_to_base")


def _com_in_base(registry, order=0):
    return CoMInBase(registry, order)


def _relative_position(registry, base_frame, target_frame):
    registry.check_frames(base_frame, target_frame)
    return RelativePosition(registry, base_frame, target_frame)


def _relative_quaternion(registry, base_frame, target_frame):
    registry.check_frames(base_frame, target_frame)
    return RelativeQuaternion(registry, base_frame, target_frame)


def _relative_rotation(registry, base_frame, target_frame):
    return quaternion_expressions.rotation_from_quaternion(
        registry.get("relative_quaternion", base_frame, target_frame),
        name=f"relative_rotation({base_frame}, {target_frame})")


def _relative_transform(registry, base_frame, target_frame):
    return Function(se3.from_position_and_rotation,
                    (registry.get("relative_position", base_frame, target_frame),
                     registry.get("relative_rotation", base_frame, target_frame)),
                    name=f"relative_transform({base_frame}, {target_frame})")


def _relative_left_jacobian(registry, base_frame, target_frame, order=0):
    registry.check_frames(base_frame, target_frame)
    return RelativeLeftJacobian(registry, base_frame, target_frame, order)


def _relative_velocity(registry, base_frame, target_frame):
    registry.check_frames(base_frame, target_frame)
    return RelativeVelocity(registry, base_frame, target_frame)


def _adjoint_transform(registry, base_frame, target_frame):
    return Function(se3.adjoint, (registry.get("relative_transform", base_frame, target_frame),),
                    name=f"adjoint_transform({base_frame}, {target_frame})")


def _adjoint_transform_wrench(registry, base_frame, target_frame):
    return Function(se3.adjoint_wrench, (registry.get("relative_transform", base_frame, target_frame),),
                    name=f"adjoint_transform_wrench({base_frame}, {target_frame})")


def _quaternion_error(registry, frame, desired_variable):
    """Error between the world orientation of ``frame`` and a desired quaternion variable."""
    world_quaternion = quaternion_expressions.quaternion_product(
        registry.get("normalized_base_quaternion"),
        registry.get("relative_quaternion", registry.base_frame, frame))
    desired = registry.variable(desired_variable)
    return quaternion_expressions.quaternion_error(world_quaternion, desired,
                                                   name=f"quaternion_error({frame}, {desired_variable})")


def _world_position(registry, frame):
    return Function(se3.apply,
                    (registry.get("world_to_base"),
                     registry.get("relative_position", registry.base_frame, frame)),
                    name=f"world_position({frame})")


def _world_rotation(registry, frame):
    return Function(lambda R_base, R_frame: R_base @ R_frame,
                    (registry.get("base_rotation"),
                     registry.get("relative_rotation", registry.base_frame, frame)),
                    name=f"world_rotation({frame})")


_BUILTIN_BUILDERS: Dict[str, Builder] = {name: _state_variable(name) for name, _ in _STATE_VARIABLES}
_BUILTIN_BUILDERS.update({
    "normalized_base_quaternion": _normalized_base_quaternion,
    "base_rotation": _base_rotation,
    "base_twist": _base_twist,
    "world_to_base": _world_to_base,
    "com_in_base": _com_in_base,
    "relative_position": _relative_position,
    "relative_quaternion": _relative_quaternion,
    "relative_rotation": _relative_rotation,
    "relative_transform": _relative_transform,
    "relative_left_jacobian": _relative_left_jacobian,
    "relative_velocity": _relative_velocity,
    "adjoint_transform": _adjoint_transform,
    "adjoint_transform_wrench": _adjoint_transform_wrench,
    "quaternion_error": _quaternion_error,
    "world_position": _world_position,
    "world_rotation": _world_rotation,
})
