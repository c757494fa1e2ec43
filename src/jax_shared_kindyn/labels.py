"""Named, contiguous segments over one flat vector.

A ``NamedVectorView`` is filled once at setup with ``add_label`` calls and then
used as an index by every consumer that needs to find, e.g., the joint
positions inside a state vector or the contact forces inside a control
vector. Segments are appended in declaration order, never overlap and leave
no gaps.
"""

from logging import getLogger
from typing import Dict, List, NamedTuple, Union

import numpy as np

from .errors import DuplicateLabelError, UnknownLabelError, VectorSizeError

logger = getLogger(__name__)


class NamedRange(NamedTuple):
    """An ``(offset, size)`` segment identified by ``name``."""

    name: str
    offset: int
    size: int

    @classmethod
    def invalid(cls, name: str = "") -> "NamedRange":
        """Sentinel returned for labels that do not exist."""
        return cls(name, -1, 0)

    @property
    def valid(self) -> bool:
        return self.offset >= 0

    @property
    def slice(self) -> slice:
        return slice(self.offset, self.offset + self.size)


class NamedVectorView:
    """Flat numpy vector partitioned into named segments.

    Example:
        >>> view = NamedVectorView()
        >>> view.add_label("base_position", 3)
        NamedRange(name='base_position', offset=0, size=3)
        >>> view.add_label("joints_position", 6).offset
        3
        >>> view["joints_position"][:] = 0.1
    """

    def __init__(self):
        self._ranges: Dict[str, NamedRange] = {}
        self._order: List[str] = []
        self._values = np.zeros(0)

    def add_label(self, name: str, size: int) -> NamedRange:
        """Append a segment of ``size`` elements and return its range.

        Existing values are kept, the new segment is zero-initialized. Slices
        taken before this call keep pointing at the previous backing vector.
        """
        if name in self._ranges:
            logger.error("Label %r is already registered", name)
            raise DuplicateLabelError(f"Label '{name}' is already registered")
        if size < 0:
            raise ValueError(f"Label '{name}' has negative size {size}")

        new_range = NamedRange(name, self.size, int(size))
        self._ranges[name] = new_range
        self._order.append(name)
        self._values = np.concatenate([self._values, np.zeros(new_range.size)])
        return new_range

    def get_range(self, name: str) -> NamedRange:
        """Range of ``name``, or ``NamedRange.invalid(name)`` if it does not exist."""
        return self._ranges.get(name, NamedRange.invalid(name))

    def slice(self, key: Union[str, NamedRange], writable: bool = True) -> np.ndarray:
        """Numpy view on a segment of the backing vector.

        Writes through a writable view modify the backing vector.
        """
        segment = self._resolve(key)
        view = self._values[segment.slice]
        if not writable:
            view.flags.writeable = False
        return view

    def __getitem__(self, key: Union[str, NamedRange]) -> np.ndarray:
        return self.slice(key)

    def _resolve(self, key: Union[str, NamedRange]) -> NamedRange:
        if isinstance(key, NamedRange):
            if not key.valid or key.offset + key.size > self.size:
                logger.error("Invalid range %s", key)
                raise UnknownLabelError(f"Invalid range {key}")
            return key
        segment = self._ranges.get(key)
        if segment is None:
            logger.error("Unknown label %r", key)
            raise UnknownLabelError(f"Label '{key}' does not exist")
        return segment

    @property
    def values(self) -> np.ndarray:
        """The backing vector (not a copy)."""
        return self._values

    @values.setter
    def values(self, new_values) -> None:
        new_values = np.asarray(new_values, dtype=float)
        if new_values.shape != (self.size,):
            logger.error("Vector of shape %s does not match view size %d", new_values.shape, self.size)
            raise VectorSizeError(
                f"Expected a vector of size {self.size}, got shape {new_values.shape}")
        # Copy in place so that outstanding slices stay valid
        self._values[:] = new_values

    def zero(self) -> None:
        self._values[:] = 0.0

    def clear(self) -> None:
        """Remove every label; the view becomes empty."""
        self._ranges.clear()
        self._order.clear()
        self._values = np.zeros(0)

    @property
    def size(self) -> int:
        return self._values.shape[0]

    def __len__(self) -> int:
        return self.size

    @property
    def labels(self) -> List[str]:
        return list(self._order)

    @property
    def number_of_labels(self) -> int:
        return len(self._order)

    def __contains__(self, name: str) -> bool:
        return name in self._ranges

    def __repr__(self) -> str:
        segments = ", ".join(f"{r.name}[{r.offset}:{r.offset + r.size}]"
                             for r in (self._ranges[n] for n in self._order))
        return f"NamedVectorView({segments})"
