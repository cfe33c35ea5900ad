"""
Tuning constants and safety bounds for LoP/DoP prediction and range partitioning.

The cost-model multipliers are empirically tuned for shuffle-heavy key/value
workloads. All values can be overridden via the ``limits`` dict; these are the
defaults used when nothing is supplied.
"""

from typing import Any

# --- Data size estimate ---
KV_PAIR_BYTES = 108  # In-memory footprint of one key/value record
DATA_SIZE_FAN_OUT = 13  # Intermediate blow-up per record during the stage

# --- Executor memory ---
EXECUTOR_MEMORY_MB_DEFAULT = 1024  # spark.executor.memory when unset
RESERVED_MEMORY_MB = 300  # Spark reserved system memory
MEMORY_FRACTION_DEFAULT = 0.75  # spark.memory.fraction
TOTAL_EXECUTORS_DEFAULT = 1
TOTAL_CORES_DEFAULT = 1

# --- Local search ---
FEASIBLE_PENALTY_MIN = 0.1  # Exclusive
FEASIBLE_PENALTY_MAX = 1.0  # Exclusive
SEARCH_REPEAT_LIMIT = 2  # Same penalty chosen this many times in a row -> stop
MAX_SEARCH_ITERATIONS = 64

# --- Result clamp ---
LOP_CLAMP_THRESHOLD = 128 * 8
LOP_CLAMP_VALUE = 128

# --- Sampling ---
SAMPLE_POINTS_PER_PARTITION = 20.0
SAMPLE_SIZE_MAX = 1e6
OVERSAMPLE_FACTOR = 3.0

# --- Partition lookup ---
LINEAR_SCAN_MAX_BOUNDS = 128  # Above this, binary search

# --- Published config keys ---
LOP_CONF_KEYS = ("spark.default.parallelism", "spark.sql.shuffle.partitions")
DOP_CONF_KEY = "spark.executor.cores"


def get_default_limits() -> dict[str, Any]:
    """Return a dict of default limits for use in config or tests."""
    return {
        "kv_pair_bytes": KV_PAIR_BYTES,
        "data_size_fan_out": DATA_SIZE_FAN_OUT,
        "executor_memory_mb_default": EXECUTOR_MEMORY_MB_DEFAULT,
        "reserved_memory_mb": RESERVED_MEMORY_MB,
        "memory_fraction_default": MEMORY_FRACTION_DEFAULT,
        "feasible_penalty_min": FEASIBLE_PENALTY_MIN,
        "feasible_penalty_max": FEASIBLE_PENALTY_MAX,
        "search_repeat_limit": SEARCH_REPEAT_LIMIT,
        "max_search_iterations": MAX_SEARCH_ITERATIONS,
        "lop_clamp_threshold": LOP_CLAMP_THRESHOLD,
        "lop_clamp_value": LOP_CLAMP_VALUE,
        "sample_points_per_partition": SAMPLE_POINTS_PER_PARTITION,
        "sample_size_max": SAMPLE_SIZE_MAX,
        "oversample_factor": OVERSAMPLE_FACTOR,
        "linear_scan_max_bounds": LINEAR_SCAN_MAX_BOUNDS,
    }
