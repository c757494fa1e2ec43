"""RobotModel PyTree data structure for a floating-base robot.

This module defines the immutable description of a robot's kinematic tree and
inertial parameters, in a format compatible with JAX transformations.
"""

import jax
import jax.numpy as jnp
from jax import Array
from flax import struct
from typing import Tuple

from ..errors import UnknownFrameError


@struct.dataclass
class RobotModel:
    """Immutable PyTree representation of a floating-base robot.

    The robot is stored as a flattened tree using integer indices for
    parent-child relationships. Link 0 is the root and the default
    floating base; ``with_floating_base`` picks another link. Every link is a
    frame that kinematic quantities can be requested for.

    Attributes:
        link_names: Tuple of all link names in breadth-first order.
                    Marked as a static field for JIT compilation.
        joint_names: Tuple of all actuated (non-fixed) joint names. The joint
                     position vector follows this order.
        parent_indices: Array of shape (num_links,) where parent_indices[i]
                       is the parent link index of link i. Root link parents itself.
        joint_transforms: Array of shape (num_links, 4, 4) containing SE(3)
                         transforms from each link's parent to its joint frame.
        joint_axes: Array of shape (num_links, 6) containing 6D twist
                   vectors for each joint. [vx,vy,vz,wx,wy,wz] format.
        actuated_joint_to_link_idx: Array of shape (num_dofs,) with the index
                   of the child link moved by each actuated joint.
        link_masses: Array of shape (num_links,).
        link_coms: Array of shape (num_links, 3), centre of mass in link frame.
        link_inertias: Array of shape (num_links, 3, 3), rotational inertia
                   about the centre of mass, expressed in link frame.
        floating_base_idx: Index of the link used as floating base. Defaults
                   to the root; the tree itself is never re-ordered.
    """
    link_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    parent_indices: Array
    joint_transforms: Array
    joint_axes: Array
    actuated_joint_to_link_idx: Array
    link_masses: Array
    link_coms: Array
    link_inertias: Array
    floating_base_idx: int = struct.field(pytree_node=False, default=0)

    @property
    def num_links(self) -> int:
        return len(self.link_names)

    @property
    def num_dofs(self) -> int:
        return len(self.joint_names)

    @property
    def base_link(self) -> str:
        """Name of the floating base link."""
        return self.link_names[self.floating_base_idx]

    @property
    def root_link(self) -> str:
        return self.link_names[0]

    def with_floating_base(self, link_name: str) -> "RobotModel":
        """Same robot with ``link_name`` as floating base."""
        return self.replace(floating_base_idx=self.link_index(link_name))

    @property
    def total_mass(self) -> Array:
        return jnp.sum(self.link_masses)

    def link_index(self, link_name: str) -> int:
        """Index of ``link_name``, raising UnknownFrameError if missing."""
        try:
            return self.link_names.index(link_name)
        except ValueError:
            raise UnknownFrameError(link_name) from None

    def has_link(self, link_name: str) -> bool:
        return link_name in self.link_names
