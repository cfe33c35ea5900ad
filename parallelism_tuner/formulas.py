"""
Pure functions for the LoP/DoP cost model.

Formulas are documented for auditability and tuning. All inputs come from
config or the key sample; no hardcoded values except mathematical constants.
"""

import math

from parallelism_tuner.config import (
    CostEstimate,
    CostInputs,
    ParallelismPoint,
)
from parallelism_tuner.constants import (
    DATA_SIZE_FAN_OUT,
    KV_PAIR_BYTES,
    LOP_CLAMP_THRESHOLD,
    LOP_CLAMP_VALUE,
)

# (lop shift, dop shift): +1 doubles, -1 halves, 0 holds. Identity is excluded.
NEIGHBOR_MOVES: tuple[tuple[int, int], ...] = (
    (-1, 1),
    (0, 1),
    (1, 1),
    (-1, 0),
    (1, 0),
    (-1, -1),
    (0, -1),
    (1, -1),
)


def round_half_up(value: float) -> int:
    """Round to nearest integer with .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Data size and seeds
# ---------------------------------------------------------------------------


def estimate_data_size_bytes(
    sample_size: int,
    per_key_weight: float,
    kv_pair_bytes: float = KV_PAIR_BYTES,
    fan_out: float = DATA_SIZE_FAN_OUT,
) -> tuple[float, list[str]]:
    """
    Estimate bytes handled by the stage from a weighted key sample.

    Formula:
        data_size = kv_pair_bytes * sample_size * per_key_weight * fan_out

    sample_size * per_key_weight approximates the record count; kv_pair_bytes is
    the per-record footprint and fan_out the intermediate blow-up.

    Returns:
        (data_size_bytes, explanation_lines)
    """
    data_size = float(kv_pair_bytes * sample_size * per_key_weight * fan_out)
    explanation = [
        f"Data size: {kv_pair_bytes} B/kv * {sample_size} samples * weight {per_key_weight:.4g} "
        f"* fan-out {fan_out} -> {data_size:.4g} B"
    ]
    return data_size, explanation


def nearest_power_of_two(value: float) -> int:
    """Nearest power of two in log space (13 -> 16, 11 -> 8). Values below 1 give 1."""
    if not math.isfinite(value) or value < 1:
        return 1
    return 2 ** round_half_up(math.log2(value))


def seed_point(inputs: CostInputs) -> tuple[ParallelismPoint, list[str]]:
    """
    Initial (LoP, DoP) before the local search.

    Formula:
        cal_dop = total_cores
        cal_lop = round(data_size * cal_dop / memory_budget)
        min_lop = nearest power of two of cal_lop

    Returns:
        (seed_point, explanation_lines)
    """
    cal_dop = inputs.total_cores
    raw = inputs.data_size_bytes * cal_dop / inputs.memory_budget_bytes
    cal_lop = round_half_up(raw) if math.isfinite(raw) else 0
    min_lop = nearest_power_of_two(cal_lop)
    explanation = [
        f"Seed: cal_dop=total_cores={cal_dop}, cal_lop=round({inputs.data_size_bytes:.4g} * {cal_dop} "
        f"/ {inputs.memory_budget_bytes:.4g})={cal_lop} -> power of two {min_lop}"
    ]
    return ParallelismPoint.floored(min_lop, cal_dop), explanation


# ---------------------------------------------------------------------------
# Cost model
# ---------------------------------------------------------------------------


def estimate_cost(inputs: CostInputs, point: ParallelismPoint) -> CostEstimate:
    """
    Cost of running the stage at (lop, dop).

    Formulas:
        a = data_size / lop                                  (per-partition work)
        b = data_size * dop / (lop * memory_budget)          (memory pressure)
        round_cost = a if b < 1 else a * (1 + b)             (spill/GC penalty)
        stage_cost = round_cost * lop / (dop * total_executors)
        penalty = b
    """
    data_size = inputs.data_size_bytes
    a = data_size / point.lop
    b = (data_size * point.dop) / (point.lop * inputs.memory_budget_bytes)
    round_cost = a if b < 1 else a * (1 + b)
    stage_cost = round_cost * point.lop / (point.dop * inputs.total_executors)
    return CostEstimate(point=point, round_cost=round_cost, stage_cost=stage_cost, penalty=b)


def _shift(value: int, direction: int) -> int:
    if direction > 0:
        return value * 2
    if direction < 0:
        return value // 2
    return value


def neighbor(point: ParallelismPoint, move: tuple[int, int]) -> ParallelismPoint:
    """Apply one halve/hold/double move; coordinates below 1 are floored to 1."""
    lop_shift, dop_shift = move
    return ParallelismPoint.floored(_shift(point.lop, lop_shift), _shift(point.dop, dop_shift))


def neighborhood(point: ParallelismPoint) -> list[ParallelismPoint]:
    """The 8 neighbors of point, in NEIGHBOR_MOVES order."""
    return [neighbor(point, move) for move in NEIGHBOR_MOVES]


# ---------------------------------------------------------------------------
# Result guards
# ---------------------------------------------------------------------------


def clamp_point(
    point: ParallelismPoint,
    configured_dop: int,
    threshold: int = LOP_CLAMP_THRESHOLD,
    clamp_value: int = LOP_CLAMP_VALUE,
) -> tuple[ParallelismPoint, list[str]]:
    """
    Guard against runaway partition counts.

    Rule: if lop > threshold, fall back to (clamp_value, configured_dop).

    Returns:
        (point, explanation_lines)
    """
    if point.lop <= threshold:
        return point, []
    clamped = ParallelismPoint.floored(clamp_value, configured_dop)
    explanation = [
        f"LoP {point.lop} > {threshold}: clamped to lop={clamped.lop}, dop={clamped.dop}"
    ]
    return clamped, explanation
