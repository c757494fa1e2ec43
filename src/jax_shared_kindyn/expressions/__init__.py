"""Memoized differentiable expressions of robot kinematics.

``graph`` holds the generic node types, ``kinematic`` the nodes backed by the
cached evaluator, ``quaternion`` the orientation builders and ``registry`` the
keyed store that shares nodes between consumers.
"""

from .graph import (
    Constant,
    Expression,
    Function,
    Generation,
    Identity,
    Variable,
    Zeros,
    add_all,
    contract,
    stack_rows,
)
from .kinematic import CoMInBase, RelativeLeftJacobian, RelativePosition, RelativeQuaternion, RelativeVelocity
from .registry import ExpressionKey, ExpressionRegistry

__all__ = [
    "Constant",
    "Expression",
    "Function",
    "Generation",
    "Identity",
    "Variable",
    "Zeros",
    "add_all",
    "contract",
    "stack_rows",
    "CoMInBase",
    "RelativeLeftJacobian",
    "RelativePosition",
    "RelativeQuaternion",
    "RelativeVelocity",
    "ExpressionKey",
    "ExpressionRegistry",
]
