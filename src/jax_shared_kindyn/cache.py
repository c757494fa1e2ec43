"""State caches: evaluate-if-changed wrappers around a kinematics evaluator.

A ``StateCache`` owns a private copy of an evaluator and the last state pushed
into it. Constraint and cost terms evaluated by a solver repeatedly ask for
values, Jacobians and Hessians at the same state; the cache turns those
requests into a single evaluator update per distinct state.

A ``TimeIndexedCacheSet`` holds one ``StateCache`` per sample time of a
trajectory so that all the terms referring to one knot share one evaluator.
"""

import bisect
import copy
import enum
from logging import getLogger
from typing import Iterator, List, Optional, Sequence

import numpy as np

from .config import DEFAULT_TIME_TOLERANCE, DEFAULT_UPDATE_TOLERANCE
from .core import RobotModel, RobotState
from .errors import InvalidTimingsError, UninitializedStateError, UnknownTimeSampleError
from .evaluator import KinDynBackend

logger = getLogger(__name__)


class UpdateResult(enum.Enum):
    """Outcome of ``StateCache.update``."""

    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"

    @property
    def changed(self) -> bool:
        return self is UpdateResult.CHANGED

    @property
    def ok(self) -> bool:
        return self is not UpdateResult.FAILED

    def __bool__(self) -> bool:
        return self.ok


def _forward(name: str):
    """Read accessor delegating to the evaluator once a state is available."""

    def accessor(self, *args, **kwargs):
        if not self._evaluated:
            raise UninitializedStateError(
                f"'{name}' was requested before the first successful update")
        return getattr(self._evaluator, name)(*args, **kwargs)

    accessor.__name__ = name
    accessor.__doc__ = f"Forwards to the evaluator's ``{name}`` for the cached state."
    return accessor


class StateCache:
    """Evaluator plus the last state it was evaluated at.

    Args:
        evaluator: kinematics/dynamics backend; deep copied, so the cache owns
            independent scratch buffers
        tolerance: two states are identical if every component differs by less
            than this value
    """

    def __init__(self, evaluator: KinDynBackend, tolerance: float = DEFAULT_UPDATE_TOLERANCE):
        if not evaluator.is_valid():
            raise ValueError("The evaluator has no robot model loaded")
        self._evaluator = copy.deepcopy(evaluator)
        self._state: Optional[RobotState] = None
        self._evaluated = False
        self._generation = 0
        self.tolerance = tolerance

    def update(self, state: RobotState) -> UpdateResult:
        """Push ``state``; recompute only if it differs from the cached one."""
        if self._evaluated and self._evaluator.same_state(state, self._tolerance):
            return UpdateResult.UNCHANGED

        if not self._evaluator.update_state(state):
            logger.warning("Evaluator rejected the state update")
            return UpdateResult.FAILED

        self._state = state.copy()
        self._evaluated = True
        self._generation += 1
        logger.debug("State cache updated to generation %d", self._generation)
        return UpdateResult.CHANGED

    def set_floating_base(self, frame: str) -> bool:
        """Change the floating base of the cached evaluator.

        A cached state is re-evaluated with the new base and counts as a new
        generation, since every base-relative quantity changes with it.
        """
        if not self._evaluator.set_floating_base(frame):
            return False
        if self._evaluated:
            self._evaluator.update_state(self._state)
            self._generation += 1
        return True

    @property
    def evaluated(self) -> bool:
        return self._evaluated

    @property
    def state(self) -> RobotState:
        if not self._evaluated:
            raise UninitializedStateError("The cache has not been updated yet")
        return self._state

    @property
    def generation(self) -> int:
        """Number of successful updates that changed the state."""
        return self._generation

    @property
    def tolerance(self) -> float:
        return self._tolerance

    @tolerance.setter
    def tolerance(self, value: float) -> None:
        if value < 0:
            raise ValueError(f"The tolerance must be non-negative, got {value}")
        self._tolerance = float(value)

    @property
    def model(self) -> RobotModel:
        return self._evaluator.model

    @property
    def evaluator(self) -> KinDynBackend:
        return self._evaluator

    base_transform = _forward("base_transform")
    world_transform = _forward("world_transform")
    relative_transform = _forward("relative_transform")
    frame_jacobian = _forward("frame_jacobian")
    relative_left_jacobian = _forward("relative_left_jacobian")
    frame_velocity = _forward("frame_velocity")
    frame_velocity_joints_derivative = _forward("frame_velocity_joints_derivative")
    relative_velocity = _forward("relative_velocity")
    com_position = _forward("com_position")
    com_jacobian = _forward("com_jacobian")
    com_in_base = _forward("com_in_base")
    linear_angular_momentum = _forward("linear_angular_momentum")
    momentum_jacobian = _forward("momentum_jacobian")
    momentum_joints_derivative = _forward("momentum_joints_derivative")
    mass_matrix = _forward("mass_matrix")
    static_forces = _forward("static_forces")
    static_forces_joints_derivative = _forward("static_forces_joints_derivative")


class TimeLookup(enum.Enum):
    """How ``TimeIndexedCacheSet.get`` maps a time to a sample."""

    EXACT = "exact"
    FLOOR = "floor"


class TimeIndexedCacheSet:
    """One ``StateCache`` per sample time.

    Args:
        evaluator: backend copied into every cache
        times: strictly increasing sample times
        lookup: ``EXACT`` requires the query to match a sample time within
            ``time_tolerance``; ``FLOOR`` picks the latest sample at or before
            the query
        tolerance: state tolerance of every cache
        time_tolerance: slack on time comparisons
    """

    def __init__(self, evaluator: KinDynBackend, times: Sequence[float], *,
                 lookup: TimeLookup = TimeLookup.EXACT,
                 tolerance: float = DEFAULT_UPDATE_TOLERANCE,
                 time_tolerance: float = DEFAULT_TIME_TOLERANCE):
        times = [float(t) for t in times]
        if not times:
            raise InvalidTimingsError("At least one sample time is required")
        if not all(np.isfinite(times)):
            raise InvalidTimingsError(f"Sample times must be finite, got {times}")
        if any(later <= earlier for earlier, later in zip(times, times[1:])):
            logger.error("Sample times are not strictly increasing: %s", times)
            raise InvalidTimingsError("Sample times must be strictly increasing without duplicates")

        self._times = times
        self._lookup = lookup
        self._time_tolerance = time_tolerance
        self._caches: List[StateCache] = [StateCache(evaluator, tolerance) for _ in times]

    def index(self, time: float) -> int:
        """Index of the cache serving ``time``."""
        time = float(time)
        slack = self._time_tolerance
        position = bisect.bisect_right(self._times, time + slack) - 1

        if self._lookup is TimeLookup.FLOOR:
            if position < 0:
                raise UnknownTimeSampleError(
                    f"Time {time} precedes the first sample time {self._times[0]}")
            return position

        # Exact lookup: the nearest sample within tolerance
        candidates = [i for i in (position, position + 1) if 0 <= i < len(self._times)]
        for i in candidates:
            if abs(self._times[i] - time) <= slack:
                return i
        raise UnknownTimeSampleError(f"No sample at time {time}")

    def get(self, time: float) -> StateCache:
        return self._caches[self.index(time)]

    @property
    def times(self) -> List[float]:
        return list(self._times)

    @property
    def lookup(self) -> TimeLookup:
        return self._lookup

    def set_tolerance(self, tolerance: float) -> None:
        for cache in self._caches:
            cache.tolerance = tolerance

    def set_floating_base(self, frame: str) -> bool:
        if not self._caches[0].model.has_link(frame):
            logger.warning("Cannot use '%s' as floating base", frame)
            return False
        return all([cache.set_floating_base(frame) for cache in self._caches])

    @property
    def model(self) -> RobotModel:
        return self._caches[0].model

    def __len__(self) -> int:
        return len(self._caches)

    def __getitem__(self, index: int) -> StateCache:
        return self._caches[index]

    def __iter__(self) -> Iterator[StateCache]:
        return iter(self._caches)
