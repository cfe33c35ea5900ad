"""
Range boundary selection from a weighted key sample.

Turns per-partition reservoir samples into weighted candidates, cuts the sorted
candidates into roughly equal-weight ranges and maps keys back to range indices.
"""

import math
from bisect import bisect_left
from typing import Any, Iterable, Sequence

from parallelism_tuner.config import (
    InvalidConfigurationError,
    PartitionSketch,
    SortOrder,
    WeightedCandidate,
)
from parallelism_tuner.constants import (
    LINEAR_SCAN_MAX_BOUNDS,
    OVERSAMPLE_FACTOR,
    SAMPLE_POINTS_PER_PARTITION,
    SAMPLE_SIZE_MAX,
)


# ---------------------------------------------------------------------------
# Sample sizing and candidate weights
# ---------------------------------------------------------------------------


def sample_size_for_partitions(
    partitions: int,
    points_per_partition: float = SAMPLE_POINTS_PER_PARTITION,
    cap: float = SAMPLE_SIZE_MAX,
) -> float:
    """Total sample size needed for balanced output: min(points_per_partition * partitions, cap)."""
    return min(points_per_partition * partitions, cap)


def sample_size_per_partition(
    sample_size: float,
    num_input_partitions: int,
    oversample: float = OVERSAMPLE_FACTOR,
) -> int:
    """Per input partition reservoir size: ceil(oversample * sample_size / num_input_partitions)."""
    if num_input_partitions < 1:
        raise InvalidConfigurationError(
            f"Number of input partitions must be positive but found {num_input_partitions}."
        )
    return int(math.ceil(oversample * sample_size / num_input_partitions))


def weighted_candidates(
    num_items: int,
    sketches: Iterable[PartitionSketch],
    sample_size: float,
    per_partition: int,
) -> tuple[list[WeightedCandidate], set[int], float]:
    """
    Weight each sampled key by the inverse of its partition's sampling probability.

    A partition holding far more than the average number of items is undersampled
    by its reservoir; it is reported as imbalanced so the caller can re-sample it
    with the global fraction (see resampled_candidates).

    Returns:
        (candidates, imbalanced_partition_ids, fraction)
    """
    fraction = min(sample_size / max(num_items, 1), 1.0)
    candidates: list[WeightedCandidate] = []
    imbalanced: set[int] = set()
    for sketch in sketches:
        if fraction * sketch.item_count > per_partition:
            imbalanced.add(sketch.partition_id)
            continue
        if not sketch.sample:
            continue
        weight = sketch.item_count / len(sketch.sample)
        candidates.extend(WeightedCandidate(key=key, weight=weight) for key in sketch.sample)
    return candidates, imbalanced, fraction


def resampled_candidates(keys: Iterable[Any], fraction: float) -> list[WeightedCandidate]:
    """Candidates from a re-sample drawn with probability fraction."""
    weight = 1.0 / fraction
    return [WeightedCandidate(key=key, weight=weight) for key in keys]


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------


def determine_bounds(candidates: Sequence[WeightedCandidate], target_lop: int) -> list[Any]:
    """
    Cut sorted candidates into target_lop ranges of roughly equal total weight.

    Walks candidates in key order accumulating weight; each time the running
    weight reaches the next multiple of total_weight / target_lop the key becomes
    a bound, unless it equals the previous bound. At most target_lop - 1 bounds
    are returned, strictly increasing. Fewer come back when the sample runs out
    or holds too many duplicate keys.
    """
    if target_lop < 0:
        raise InvalidConfigurationError(
            f"Number of partitions cannot be negative but found {target_lop}."
        )
    if target_lop <= 1 or not candidates:
        return []
    ordered = sorted(candidates, key=lambda c: c.key)
    total_weight = sum(float(c.weight) for c in ordered)
    if total_weight <= 0:
        return []

    step = total_weight / target_lop
    cum_weight = 0.0
    target = step
    bounds: list[Any] = []
    for candidate in ordered:
        if len(bounds) >= target_lop - 1:
            break
        cum_weight += candidate.weight
        if cum_weight >= target:
            # Skip duplicate values.
            if not bounds or candidate.key > bounds[-1]:
                bounds.append(candidate.key)
                target += step
    return bounds


class RangeBounds:
    """
    Upper bounds of the first len(bounds) ranges; maps a key to its range index.

    Small bound sets are scanned linearly, larger ones binary-searched; both
    return the number of bounds strictly below the key.
    """

    def __init__(
        self,
        bounds: Sequence[Any],
        order: SortOrder = SortOrder.ASCENDING,
        linear_scan_max_bounds: int = LINEAR_SCAN_MAX_BOUNDS,
    ):
        self.bounds = list(bounds)
        self.order = order
        self._linear_scan_max = linear_scan_max_bounds

    @property
    def num_partitions(self) -> int:
        return len(self.bounds) + 1

    def get_partition(self, key: Any) -> int:
        bounds = self.bounds
        if len(bounds) <= self._linear_scan_max:
            partition = 0
            while partition < len(bounds) and key > bounds[partition]:
                partition += 1
        else:
            partition = bisect_left(bounds, key)
        if self.order == SortOrder.ASCENDING:
            return partition
        return len(bounds) - partition

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RangeBounds):
            return NotImplemented
        return self.bounds == other.bounds and self.order == other.order

    def __hash__(self) -> int:
        return hash((tuple(self.bounds), self.order))

    def __repr__(self) -> str:
        return f"RangeBounds(bounds={self.bounds!r}, order={self.order.value})"
