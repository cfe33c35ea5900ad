"""
LoP/DoP prediction and range partitioning for data-parallel stages.

Provides config-driven utilities to:
- Predict the partition count (LoP) and threads per executor (DoP) for a stage
  from a memory budget, core/executor counts and a weighted key sample
- Cut the sample into equal-weight range bounds for the predicted LoP
- Publish the chosen pair into execution config or a SparkSession
- Translate task lifecycle states (including spill observations) to Mesos

Use with PySpark 3.x or any engine that can supply a weighted key sample.
"""

from parallelism_tuner.config import (
    CostEstimate,
    CostInputs,
    ExecutionConfig,
    InvalidConfigurationError,
    ParallelismPoint,
    PartitionSketch,
    SortOrder,
    WeightedCandidate,
)
from parallelism_tuner.boundaries import RangeBounds, determine_bounds
from parallelism_tuner.partitioner import (
    HashPartitioner,
    RangePartitioner,
    default_partitioner,
)
from parallelism_tuner.predictor import ParallelismPredictor, Prediction
from parallelism_tuner.tuner import ParallelismTuner

__all__ = [
    "ParallelismTuner",
    "ParallelismPredictor",
    "Prediction",
    "RangePartitioner",
    "HashPartitioner",
    "RangeBounds",
    "default_partitioner",
    "determine_bounds",
    "CostInputs",
    "CostEstimate",
    "ExecutionConfig",
    "ParallelismPoint",
    "PartitionSketch",
    "WeightedCandidate",
    "SortOrder",
    "InvalidConfigurationError",
]
