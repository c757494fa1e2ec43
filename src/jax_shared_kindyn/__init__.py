"""
JAX Shared KinDyn: shared kinematics caches for trajectory optimization.

This library amortizes the cost of evaluating robot kinematics and dynamics
across the many constraint and cost terms of an optimal control problem. It
provides per-knot state caches that skip recomputation for repeated states and
a memoized, differentiable expression graph of derived quantities.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import transforms
from . import core
from . import io
from .errors import KinDynCacheError
from .labels import NamedRange, NamedVectorView
from .evaluator import KinDynEvaluator, VelocityRepresentation
from .cache import StateCache, TimeIndexedCacheSet, TimeLookup, UpdateResult
from .expressions import ExpressionKey, ExpressionRegistry

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "KinDynCacheError",
    "NamedRange",
    "NamedVectorView",
    "KinDynEvaluator",
    "VelocityRepresentation",
    "StateCache",
    "TimeIndexedCacheSet",
    "TimeLookup",
    "UpdateResult",
    "ExpressionKey",
    "ExpressionRegistry",
]
