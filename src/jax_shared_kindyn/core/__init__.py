"""Core data structures for JAX Shared KinDyn.

This module provides the immutable robot description and the robot state
value type shared by the evaluator, the caches and the expression graph.
"""

from .robot_model import RobotModel
from .state import RobotState

__all__ = ["RobotModel", "RobotState"]
