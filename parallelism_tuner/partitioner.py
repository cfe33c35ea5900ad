"""
Partitioners: hash-based, and range-based with predicted LoP/DoP.

The sampling primitives (per-partition reservoir sketch, re-sampling of skewed
partitions) belong to the execution engine and are consumed through the
Sketcher and Resampler protocols.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol, Sequence

from parallelism_tuner.boundaries import (
    RangeBounds,
    determine_bounds,
    resampled_candidates,
    sample_size_for_partitions,
    sample_size_per_partition,
    weighted_candidates,
)
from parallelism_tuner.config import (
    ExecutionConfig,
    InvalidConfigurationError,
    PartitionSketch,
    SortOrder,
    WeightedCandidate,
)
from parallelism_tuner.constants import LINEAR_SCAN_MAX_BOUNDS
from parallelism_tuner.predictor import ParallelismPredictor, Prediction

logger = logging.getLogger("parallelism_tuner")


class Sketcher(Protocol):
    def sketch(self, dataset: Any, sample_size_per_partition: int) -> tuple[int, list[PartitionSketch]]:
        """Reservoir-sample every partition; return (total item count, per-partition sketches)."""
        ...


class Resampler(Protocol):
    def resample(self, dataset: Any, partition_ids: set[int], fraction: float) -> Sequence[Any]:
        """Bernoulli-sample the given partitions with probability fraction."""
        ...


class Partitioner(ABC):
    """Maps each key to a partition id in [0, num_partitions)."""

    @property
    @abstractmethod
    def num_partitions(self) -> int: ...

    @abstractmethod
    def get_partition(self, key: Any) -> int: ...


class PartitionedSource(Protocol):
    num_partitions: int
    partitioner: Optional[Partitioner]


def _check_partitions(partitions: int) -> None:
    if partitions < 0:
        raise InvalidConfigurationError(
            f"Number of partitions cannot be negative but found {partitions}."
        )


class HashPartitioner(Partitioner):
    """Partition by Python hash(). None always lands in partition 0."""

    def __init__(self, partitions: int):
        _check_partitions(partitions)
        self._partitions = partitions

    @property
    def num_partitions(self) -> int:
        return self._partitions

    def get_partition(self, key: Any) -> int:
        if key is None:
            return 0
        if self._partitions == 0:
            raise InvalidConfigurationError("HashPartitioner with 0 partitions cannot place keys")
        return hash(key) % self._partitions

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HashPartitioner):
            return NotImplemented
        return other.num_partitions == self.num_partitions

    def __hash__(self) -> int:
        return self._partitions


class RangePartitioner(Partitioner):
    """
    Range partitioner whose partition count comes from ParallelismPredictor.

    The realized partition count may be smaller than the predicted LoP when the
    sample has too few distinct keys.
    """

    def __init__(self, bounds: RangeBounds, prediction: Optional[Prediction] = None):
        self.bounds = bounds
        self.prediction = prediction

    @property
    def num_partitions(self) -> int:
        return self.bounds.num_partitions

    def get_partition(self, key: Any) -> int:
        return self.bounds.get_partition(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RangePartitioner):
            return NotImplemented
        return self.bounds == other.bounds

    def __hash__(self) -> int:
        return hash(self.bounds)

    @classmethod
    def from_candidates(
        cls,
        candidates: Sequence[WeightedCandidate],
        partitions: int,
        config: ExecutionConfig,
        *,
        predictor: Optional[ParallelismPredictor] = None,
        order: SortOrder = SortOrder.ASCENDING,
        linear_scan_max_bounds: int = LINEAR_SCAN_MAX_BOUNDS,
    ) -> "RangePartitioner":
        """
        Predict (LoP, DoP) from the candidates, cut bounds, then publish the pair into config.

        partitions <= 1 skips prediction and yields a single range. config is
        left untouched when the keys cannot be ordered.
        """
        _check_partitions(partitions)
        if partitions <= 1 or not candidates:
            return cls(RangeBounds([], order, linear_scan_max_bounds))

        predictor = predictor or ParallelismPredictor()
        prediction = predictor.predict_from_candidates(candidates, config)
        bounds = determine_bounds(candidates, prediction.lop)
        config.set_parallelism(prediction.point)
        for line in prediction.explanation:
            logger.info("range_partitioner: %s", line)
        logger.info(
            "range_partitioner: lop=%s dop=%s bounds=%s candidates=%s",
            prediction.lop,
            prediction.dop,
            len(bounds),
            len(candidates),
        )
        return cls(RangeBounds(bounds, order, linear_scan_max_bounds), prediction)

    @classmethod
    def from_dataset(
        cls,
        dataset: Any,
        partitions: int,
        num_input_partitions: int,
        config: ExecutionConfig,
        sketcher: Sketcher,
        resampler: Resampler,
        *,
        predictor: Optional[ParallelismPredictor] = None,
        order: SortOrder = SortOrder.ASCENDING,
    ) -> "RangePartitioner":
        """
        Full pipeline: size the sample, sketch, weight, re-sample skewed partitions, cut bounds.
        """
        _check_partitions(partitions)
        if partitions <= 1:
            return cls(RangeBounds([], order))

        sample_size = sample_size_for_partitions(partitions)
        per_partition = sample_size_per_partition(sample_size, num_input_partitions)
        num_items, sketches = sketcher.sketch(dataset, per_partition)
        if num_items == 0:
            logger.info("range_partitioner: empty dataset, single partition")
            return cls(RangeBounds([], order))

        candidates, imbalanced, fraction = weighted_candidates(
            num_items, sketches, sample_size, per_partition
        )
        if imbalanced:
            logger.info(
                "range_partitioner: re-sampling %s imbalanced partitions at fraction %.4g",
                len(imbalanced),
                fraction,
            )
            keys = resampler.resample(dataset, imbalanced, fraction)
            candidates.extend(resampled_candidates(keys, fraction))

        return cls.from_candidates(candidates, partitions, config, predictor=predictor, order=order)


def default_partitioner(
    sources: Sequence[PartitionedSource],
    default_parallelism: Optional[int] = None,
) -> Partitioner:
    """
    Choose a partitioner for a cogroup-like operation.

    Reuses the partitioner of the largest source that has a non-empty one.
    Otherwise hash-partitions into default_parallelism partitions when set, or
    into as many partitions as the largest source.
    """
    if not sources:
        raise InvalidConfigurationError("At least one source is required")
    by_size = sorted(sources, key=lambda s: s.num_partitions, reverse=True)
    for source in by_size:
        if source.partitioner is not None and source.partitioner.num_partitions > 0:
            return source.partitioner
    if default_parallelism is not None:
        return HashPartitioner(default_parallelism)
    return HashPartitioner(by_size[0].num_partitions)
