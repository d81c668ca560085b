"""
Model Cache Global Constants

Centralized location for the fixed values of the entity cache layer.
"""

# Negative caching
DEFAULT_INVALID_VALUE = "data invalid"
NEGATIVE_CACHE_TTL_SECONDS = 300

# Stampede lock
LOCK_KEY_PREFIX = "setcachelock:"
LOCK_MARKER_VALUE = "1"

# Default primary key field of an entity type
DEFAULT_PRIMARY_KEY = "id"

# Application Constants
APP_VERSION = "0.1.0"
