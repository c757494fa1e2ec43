"""URDF parser for floating-base robot models.

The root link of the URDF tree is the default floating base. Links are ordered
breadth first from it, actuated joints (revolute, continuous, prismatic)
keep their document order, and ``<inertial>`` blocks are brought into the
link frame so that momentum and mass matrix computations can use them
directly.
"""

from collections import defaultdict, deque
from logging import getLogger
from typing import Dict, List, NamedTuple, Optional, Tuple

import jax.numpy as jnp
import numpy as np
from lxml import etree

from jax_shared_kindyn.core.robot_model import RobotModel
from jax_shared_kindyn.transforms import se3, so3

logger = getLogger(__name__)

_ACTUATED_TYPES = ("revolute", "continuous", "prismatic")


class _Joint(NamedTuple):
    name: str
    kind: str
    parent: str
    child: str
    element: etree._Element


def load_urdf(urdf_path: str) -> RobotModel:
    """Build a RobotModel from a URDF file.

    Args:
        urdf_path: path of the ``.urdf`` document

    Returns:
        RobotModel with kinematic tree and inertial parameters

    Raises:
        ValueError: unsupported joint type, or not exactly one root link
    """
    return _parse_robot(etree.parse(str(urdf_path)).getroot())


def load_urdf_string(urdf_xml: str) -> RobotModel:
    """Same as ``load_urdf`` for a document held in memory."""
    data = urdf_xml.encode() if isinstance(urdf_xml, str) else urdf_xml
    return _parse_robot(etree.fromstring(data))


def _read_joints(root) -> List[_Joint]:
    joints = []
    for element in root.iter('joint'):
        parent, child = element.find('parent'), element.find('child')
        if parent is None or child is None:
            # transmission blocks also contain <joint> tags
            continue
        kind = element.get('type')
        if kind != 'fixed' and kind not in _ACTUATED_TYPES:
            raise ValueError(f"Unsupported joint type '{kind}' for joint '{element.get('name')}'")
        joints.append(_Joint(element.get('name'), kind, parent.get('link'), child.get('link'), element))
    return joints


def _breadth_first(root_link: str, joints: List[_Joint]) -> List[str]:
    children = defaultdict(list)
    for joint in joints:
        children[joint.parent].append(joint.child)

    order, pending, seen = [], deque([root_link]), {root_link}
    while pending:
        link = pending.popleft()
        order.append(link)
        for child in children[link]:
            if child not in seen:
                seen.add(child)
                pending.append(child)
    return order


def _parse_robot(root) -> RobotModel:
    links = {element.get('name'): element for element in root.findall('link')}
    joints = _read_joints(root)
    incoming: Dict[str, _Joint] = {joint.child: joint for joint in joints}

    roots = [name for name in links if name not in incoming]
    if len(roots) != 1:
        raise ValueError(f"Expected exactly one root link, found: {roots}")
    ordered = _breadth_first(roots[0], joints)
    index = {name: i for i, name in enumerate(ordered)}

    actuated = [joint for joint in joints if joint.kind in _ACTUATED_TYPES]

    parents, transforms, axes = [], [], []
    masses, coms, inertias = [], [], []
    for i, link in enumerate(ordered):
        joint = incoming.get(link)
        if joint is None:
            # the root is its own parent and has no joint
            parents.append(i)
            transforms.append(jnp.eye(4))
            axes.append(jnp.zeros(6))
        else:
            parents.append(index[joint.parent])
            transforms.append(_origin_transform(joint.element.find('origin')))
            axes.append(_motion_axis(joint))

        mass, com, inertia = _inertial(links[link].find('inertial'))
        masses.append(mass)
        coms.append(com)
        inertias.append(inertia)

    logger.debug("Loaded URDF with %d links and %d actuated joints", len(ordered), len(actuated))

    return RobotModel(
        link_names=tuple(ordered),
        joint_names=tuple(joint.name for joint in actuated),
        parent_indices=jnp.array(parents, dtype=jnp.int32),
        joint_transforms=jnp.stack(transforms),
        joint_axes=jnp.stack(axes),
        actuated_joint_to_link_idx=jnp.array([index[joint.child] for joint in actuated], dtype=jnp.int32),
        link_masses=jnp.array(masses),
        link_coms=jnp.array(np.stack(coms)),
        link_inertias=jnp.array(np.stack(inertias)),
    )


def _floats(text: str) -> np.ndarray:
    return np.array([float(x) for x in text.split()])


def _xyz_rpy(element: Optional[etree._Element]) -> Tuple[np.ndarray, np.ndarray]:
    if element is None:
        return np.zeros(3), np.zeros(3)
    return _floats(element.get('xyz', '0 0 0')), _floats(element.get('rpy', '0 0 0'))


def _origin_transform(element):
    xyz, rpy = _xyz_rpy(element)
    return se3.from_position_and_rotation(jnp.array(xyz), so3.from_rpy(jnp.array(rpy)))


def _motion_axis(joint: _Joint):
    """Unit twist of the joint, linear part first."""
    if joint.kind == 'fixed':
        return jnp.zeros(6)

    axis_element = joint.element.find('axis')
    # URDF defaults to the x axis
    direction = _floats(axis_element.get('xyz', '1 0 0')) if axis_element is not None else np.array([1.0, 0.0, 0.0])
    direction = jnp.array(direction / np.linalg.norm(direction))

    if joint.kind == 'prismatic':
        return jnp.concatenate([direction, jnp.zeros(3)])
    return jnp.concatenate([jnp.zeros(3), direction])


def _inertial(element):
    """Mass, centre of mass and rotational inertia about the CoM in link frame."""
    if element is None:
        return 0.0, np.zeros(3), np.zeros((3, 3))

    mass_element = element.find('mass')
    mass = float(mass_element.get('value', '0')) if mass_element is not None else 0.0

    com, rpy = _xyz_rpy(element.find('origin'))
    rotation = np.asarray(so3.from_rpy(jnp.array(rpy)))

    inertia = np.zeros((3, 3))
    inertia_element = element.find('inertia')
    if inertia_element is not None:
        names = (('ixx', 'ixy', 'ixz'), ('ixy', 'iyy', 'iyz'), ('ixz', 'iyz', 'izz'))
        inertia = np.array([[float(inertia_element.get(name, '0')) for name in row] for row in names])

    # inertial frame to link frame
    return mass, com, rotation @ inertia @ rotation.T
