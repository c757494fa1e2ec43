"""Memoized, differentiable expression nodes.

An expression is a node of a DAG whose leaves are ``Variable`` objects (the
joint positions, the raw base quaternion, ...) and ``Constant`` values. Every
node:

* evaluates lazily and recomputes only when one of the leaf variables it
  depends on was set since the last evaluation. Each variable carries its own
  version; the ``Generation`` shared by one graph counts every change and
  lets an owner (the registry) load pending leaf values first;
* differentiates with respect to a leaf by the chain rule, summing over its
  operands ``d self / d operand . d operand / d leaf``. Both factors are
  expressions themselves, so second derivatives are obtained by
  differentiating a derivative;
* caches each derivative by leaf name, so asking twice returns the very same
  node.

Shape convention: the derivative of an expression of shape ``S`` with respect
to a variable of dimension ``n`` has shape ``S + (n,)``. Derivatives with
respect to leaves outside ``dependencies`` are ``Zeros`` of that shape.
"""

from logging import getLogger
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
from jax import Array

from ..errors import UninitializedStateError, VectorSizeError
from ..transforms import so3

logger = getLogger(__name__)

_NOT_EVALUATED = object()


class Generation:
    """Monotonic token shared by the nodes of one graph.

    Args:
        refresh: optional callable invoked before the token is read, used by
            the registry to pull in state updates made behind its back
    """

    def __init__(self, refresh: Optional[Callable[[], None]] = None):
        self._value = 0
        self._refresh = refresh

    @property
    def token(self) -> int:
        return self.sync()

    def sync(self) -> int:
        """Run the refresh callback, then return the current value."""
        if self._refresh is not None:
            self._refresh()
        return self._value

    def advance(self) -> int:
        self._value += 1
        return self._value


class Expression:
    """Base node.

    Subclasses implement ``_compute`` and either ``partial`` (generic chain
    rule over ``operands``) or ``_build_derivative`` (closed form).

    Attributes:
        name: readable label, not used for identity
        shape: shape of the value
        operands: input expressions
        dependencies: names of the leaf variables the value depends on
        key: registry key when the node is owned by a registry, else None
        evaluations: how many times the value was actually recomputed
    """

    # numpy must defer to our reflected operators
    __array_ufunc__ = None

    def __init__(self, name: str, shape: Sequence[int], operands: Iterable["Expression"] = (),
                 clock: Optional[Generation] = None):
        self.name = name
        self.shape: Tuple[int, ...] = tuple(int(d) for d in shape)
        self.operands: Tuple[Expression, ...] = tuple(operands)
        self._clock = clock if clock is not None else _common_clock(self.operands)
        self._leaves: Dict[str, Variable] = {}
        for op in self.operands:
            self._leaves.update(op._leaves)
        self.key: Optional[Hashable] = None
        self.evaluations = 0
        self._value = None
        self._token = _NOT_EVALUATED
        self._derivatives: Dict[str, Expression] = {}
        self._partials: Dict[Hashable, Expression] = {}

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def clock(self) -> Optional[Generation]:
        return self._clock

    @property
    def dependencies(self) -> FrozenSet[str]:
        return frozenset(self._leaves)

    def depends_on(self, variable: Union["Variable", str]) -> bool:
        name = variable.name if isinstance(variable, Variable) else variable
        return name in self.dependencies

    def evaluate(self) -> Array:
        """Current value, recomputed only if a leaf it depends on changed."""
        if self._clock is not None:
            self._clock.sync()
        token = tuple(leaf.version for leaf in self._leaves.values())
        if self._token is _NOT_EVALUATED or token != self._token:
            self._value = self._compute()
            self._token = token
            self.evaluations += 1
        return self._value

    def _compute(self) -> Array:
        raise NotImplementedError

    def partial(self, index: int) -> "Expression":
        """Partial derivative with respect to ``operands[index]``, shape S + S_index."""
        raise NotImplementedError(f"{type(self).__name__} has no operand partials")

    def derivative(self, variable: "Variable") -> "Expression":
        """First derivative with respect to ``variable``, built once and cached."""
        cached = self._derivatives.get(variable.name)
        if cached is None:
            if self.depends_on(variable):
                cached = self._build_derivative(variable)
            else:
                cached = Zeros(self.shape + (variable.dimension,))
            self._derivatives[variable.name] = cached
        return cached

    def _build_derivative(self, variable: "Variable") -> "Expression":
        terms = []
        for i, operand in enumerate(self.operands):
            if not operand.depends_on(variable):
                continue
            inner = operand.derivative(variable)
            # d operand / d variable is the identity when the operand is the variable
            terms.append(self.partial(i) if isinstance(inner, Identity) else contract(self.partial(i), inner))
        return add_all(terms, self.shape + (variable.dimension,))

    def clear_derivative_cache(self) -> None:
        """Drop cached derivatives and partials, recursing into transient ones.

        Nodes owned by a registry are skipped: they are cleared through the
        registry itself.
        """
        self._clear(set())

    def _clear(self, visited: set) -> None:
        if id(self) in visited:
            return
        visited.add(id(self))
        for cached in list(self._derivatives.values()) + list(self._partials.values()):
            if cached.key is None:
                cached._clear(visited)
        self._derivatives.clear()
        self._partials.clear()

    # Arithmetic, each operation is a Function node

    def __add__(self, other):
        return Function(jnp.add, (self, other), name="add")

    def __radd__(self, other):
        return Function(jnp.add, (other, self), name="add")

    def __sub__(self, other):
        return Function(jnp.subtract, (self, other), name="sub")

    def __rsub__(self, other):
        return Function(jnp.subtract, (other, self), name="sub")

    def __mul__(self, other):
        return Function(jnp.multiply, (self, other), name="mul")

    def __rmul__(self, other):
        return Function(jnp.multiply, (other, self), name="mul")

    def __matmul__(self, other):
        return Function(jnp.matmul, (self, other), name="matmul")

    def __rmatmul__(self, other):
        return Function(jnp.matmul, (other, self), name="matmul")

    def __neg__(self):
        return Function(jnp.negative, (self,), name="neg")

    def __getitem__(self, index):
        return Function(lambda x: x[index], (self,), name=f"{self.name}[{index}]")

    @property
    def T(self) -> "Expression":
        return Function(lambda x: jnp.swapaxes(x, -1, -2), (self,), name=f"{self.name}.T")

    def skew(self) -> "Expression":
        return Function(so3.skew_symmetric, (self,), name=f"skew({self.name})")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, shape={self.shape})"


class Variable(Expression):
    """Leaf of the graph.

    Setting its value bumps ``version``, which invalidates the nodes that depend
    on this variable only, and advances the generation of the graph.
    """

    def __init__(self, name: str, dimension: int, clock: Optional[Generation] = None):
        super().__init__(name, (dimension,), (), clock=clock if clock is not None else Generation())
        self.dimension = int(dimension)
        self.version = 0
        self._leaves = {name: self}
        self._current: Optional[Array] = None

    def set_value(self, value) -> None:
        value = jnp.array(value, dtype=float)
        if value.shape != self.shape:
            raise VectorSizeError(
                f"Variable '{self.name}' expects shape {self.shape}, got {value.shape}")
        self._current = value
        self.version += 1
        self._clock.advance()

    @property
    def is_set(self) -> bool:
        return self._current is not None

    def _compute(self) -> Array:
        if self._current is None:
            raise UninitializedStateError(f"Variable '{self.name}' has no value yet")
        return self._current

    def _build_derivative(self, variable: "Variable") -> Expression:
        return Identity(self.dimension)


class Constant(Expression):
    """Fixed value independent of every variable."""

    def __init__(self, value, name: Optional[str] = None):
        value = jnp.asarray(value, dtype=float)
        super().__init__(name or "constant", value.shape)
        self._fixed = value

    def _compute(self) -> Array:
        return self._fixed


class Zeros(Constant):
    def __init__(self, shape: Sequence[int]):
        super().__init__(jnp.zeros(tuple(shape)), name="zeros")


class Identity(Constant):
    def __init__(self, dimension: int):
        super().__init__(jnp.eye(dimension), name="identity")


class Function(Expression):
    """Pure JAX function of its operands.

    Partials come from ``jax.jacfwd`` of the same function and are Function
    nodes themselves, so higher order derivatives need nothing extra.

    Args:
        fn: pure function taking one array per operand
        operands: expressions (or array-likes, wrapped as constants)
        name: readable label
    """

    def __init__(self, fn: Callable[..., Array], operands: Sequence, name: Optional[str] = None):
        operands = tuple(as_expression(op) for op in operands)
        self._raw = fn
        self._fn = jax.jit(fn)
        specs = [jax.ShapeDtypeStruct(op.shape, jnp.result_type(float)) for op in operands]
        shape = jax.eval_shape(fn, *specs).shape
        super().__init__(name or getattr(fn, "__name__", "function"), shape, operands)

    def _compute(self) -> Array:
        return self._fn(*(op.evaluate() for op in self.operands))

    def partial(self, index: int) -> Expression:
        cached = self._partials.get(index)
        if cached is None:
            cached = Function(jax.jacfwd(self._raw, argnums=index), self.operands,
                              name=f"d{self.name}/d{self.operands[index].name}")
            self._partials[index] = cached
        return cached


def _common_clock(operands: Sequence[Expression]) -> Optional[Generation]:
    clocks = {id(op.clock): op.clock for op in operands if op.clock is not None}
    if len(clocks) > 1:
        raise ValueError("Cannot combine expressions from different graphs")
    return next(iter(clocks.values()), None)


def as_expression(value) -> Expression:
    if isinstance(value, Expression):
        return value
    return Constant(value)


def contract(outer: Expression, inner: Expression) -> Expression:
    """Chain rule product: sum over the trailing axes of ``outer`` that ``inner`` leads with.

    ``outer`` has shape S + S_k and ``inner`` has shape S_k + (n,).
    """
    axes = inner.ndim - 1
    return Function(lambda a, b: jnp.tensordot(a, b, axes=axes), (outer, inner),
                    name=f"({outer.name} . {inner.name})")


def add_all(terms: Sequence[Expression], shape: Sequence[int]) -> Expression:
    """Sum of ``terms``, or ``Zeros(shape)`` when there are none."""
    terms = list(terms)
    if not terms:
        return Zeros(shape)
    if len(terms) == 1:
        return terms[0]
    return Function(lambda *values: sum(values[1:], values[0]), terms, name="sum")


def stack_rows(parts: Sequence[Expression], name: str = "stack") -> Expression:
    """Concatenate expressions along their first axis."""
    return Function(lambda *values: jnp.concatenate(values, axis=0), parts, name=name)
