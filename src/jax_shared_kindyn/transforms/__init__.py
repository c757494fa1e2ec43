"""
JAX-based rotation and rigid-body transform utilities.

This module provides pure, JIT-compilable implementations of:
- SO(3) rotations (so3 module)
- SE(3) rigid body transforms and adjoints (se3 module)
- unit quaternion maps and their derivatives (quaternion module)

All quaternions are stored in (w, x, y, z) order.
"""

from . import so3
from . import se3
from . import quaternion

__all__ = [
    "so3",
    "se3",
    "quaternion",
]
