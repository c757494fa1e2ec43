"""Structured error types for schema, precondition and graph failures.

Evaluator failures (an unsupported velocity representation, an invalid state)
are not part of this hierarchy at the public boundary: they surface as
``False``/``None`` results. ``EvaluatorFailure`` only travels inside the
expression graph and is converted by the registry.
"""

from __future__ import annotations


class KinDynCacheError(Exception):
    """Base class for jax_shared_kindyn errors."""


class SchemaError(KinDynCacheError, ValueError):
    """A vector layout or timing definition is inconsistent."""


class DuplicateLabelError(SchemaError):
    """A label was registered twice in the same view."""


class UnknownLabelError(SchemaError, KeyError):
    """A label or range does not exist in the view."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class VectorSizeError(SchemaError):
    """A flat vector does not match the accumulated view length."""


class InvalidTimingsError(SchemaError):
    """Sample times are empty, unsorted or duplicated."""


class PreconditionError(KinDynCacheError):
    """An operation was requested before its preconditions hold."""


class UninitializedStateError(PreconditionError):
    """A cached quantity was read before the first state update."""


class UnknownTimeSampleError(PreconditionError, KeyError):
    """No cache is configured for the requested time."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class UnknownVariableError(PreconditionError):
    """A derivative was requested with respect to an unregistered variable."""


class UnknownExpressionError(PreconditionError, KeyError):
    """No node and no builder exist for the requested key."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class ExpressionCycleError(KinDynCacheError):
    """Building a node required the node itself."""


class EvaluatorFailure(KinDynCacheError):
    """The kinematics evaluator reported an unsupported request."""


class UnknownFrameError(KinDynCacheError, ValueError):
    """A frame name is not part of the robot model."""

    def __init__(self, frame_name: str):
        super().__init__(f"Link '{frame_name}' not found in robot model")
        self.frame_name = frame_name
