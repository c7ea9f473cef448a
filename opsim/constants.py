"""
Shared constants for the operations simulation core
Centralizes sizes, store categories and naming so the cache, store and problem agree
"""

# ============================================================================
# Byte Sizes
# ============================================================================

KiB = 1024
MiB = KiB * 1024
GiB = MiB * 1024

# Per-series budget for the time series window cache. 0 disables the cache.
TIME_SERIES_CACHE_SIZE_BYTES = MiB

# Result store flush thresholds
MIN_CACHE_FLUSH_SIZE = MiB
MAX_CACHE_SIZE = GiB

# ============================================================================
# Result Store Categories
# ============================================================================

STORE_CONTAINER_DUALS = "duals"
STORE_CONTAINER_PARAMETERS = "parameters"
STORE_CONTAINER_VARIABLES = "variables"
STORE_CONTAINER_AUX_VARIABLES = "aux_variables"
STORE_CONTAINER_OPTIMIZER_STATS = "optimizer_stats"

STORE_CONTAINERS = {
    STORE_CONTAINER_DUALS,
    STORE_CONTAINER_PARAMETERS,
    STORE_CONTAINER_VARIABLES,
    STORE_CONTAINER_AUX_VARIABLES,
    STORE_CONTAINER_OPTIMIZER_STATS,
}

# ============================================================================
# Workspace Layout
# ============================================================================

RAW_OUTPUT_DIR = "raw_output"
MODELS_DIR = "models_json"
RESULTS_DIR = "results"

# Minute resolution, ':' is not portable in folder names
WORKSPACE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M"

# ============================================================================
# Serialization
# ============================================================================

SERIALIZATION_SCHEMA_VERSION = 1
SERIALIZED_PROBLEM_KIND = "DecisionProblem"

# Separator used when encoding (entry, component) container keys as strings
KEY_SEPARATOR = "__"

UNSET_HORIZON = 0
