"""Package-wide numeric defaults.

Every constructor that uses one of these values accepts an explicit override,
so the constants here are only starting points and are never mutated at
runtime.
"""

# Two states closer than this in the infinity norm are considered identical.
DEFAULT_UPDATE_TOLERANCE = 1e-15

# Exact time lookup: a query matches a sample only if |t - t_k| <= tolerance.
DEFAULT_TIME_TOLERANCE = 0.0

# Raw base quaternions are accepted if | ||q|| - 1 | <= tolerance.
DEFAULT_QUATERNION_NORM_TOLERANCE = 0.1

# Slack on the [-1, 1] component bounds of a quaternion.
QUATERNION_BOUNDS_TOLERANCE = 1e-6

DEFAULT_GRAVITY = (0.0, 0.0, -9.81)
