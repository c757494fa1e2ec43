"""I/O utilities for loading robot models.

This module provides functions for parsing URDF descriptions and converting
them to JAX-native RobotModel structures.
"""

from .urdf_parser import load_urdf, load_urdf_string

__all__ = ["load_urdf", "load_urdf_string"]
