"""
Configuration and value models for the parallelism tuner.

All inputs and limits are config-driven; no hardcoded magic numbers in core logic.
"""

import re
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from parallelism_tuner.constants import (
    EXECUTOR_MEMORY_MB_DEFAULT,
    FEASIBLE_PENALTY_MAX,
    FEASIBLE_PENALTY_MIN,
    MEMORY_FRACTION_DEFAULT,
    RESERVED_MEMORY_MB,
    TOTAL_CORES_DEFAULT,
    TOTAL_EXECUTORS_DEFAULT,
)

_MEMORY_STRING = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgtp]?)b?\s*$", re.IGNORECASE)
_MB_PER_UNIT = {
    "": 1.0 / (1024 * 1024),  # bare number is bytes
    "k": 1.0 / 1024,
    "m": 1.0,
    "g": 1024.0,
    "t": 1024.0 * 1024,
    "p": 1024.0 * 1024 * 1024,
}


class InvalidConfigurationError(ValueError):
    """Raised for explicit configuration that can never produce a valid plan."""


def memory_string_to_mb(value: str) -> int:
    """
    Convert a JVM-style memory string ("512m", "4g", "1.5t", "1048576") to MB.

    A bare number is interpreted as bytes.
    """
    match = _MEMORY_STRING.match(value)
    if match is None:
        raise InvalidConfigurationError(f"Invalid memory string: {value!r}")
    amount, unit = match.groups()
    return int(float(amount) * _MB_PER_UNIT[unit.lower()])


class SortOrder(str, Enum):
    """Ordering mode used when mapping keys to range partitions."""

    ASCENDING = "ascending"
    DESCENDING = "descending"


class ParallelismPoint(BaseModel):
    """One candidate (partition count, threads per executor) configuration."""

    model_config = ConfigDict(frozen=True)

    lop: int = Field(..., ge=1, description="Level of parallelism (number of partitions)")
    dop: int = Field(..., ge=1, description="Degree of parallelism (threads per executor)")

    @classmethod
    def floored(cls, lop: int, dop: int) -> "ParallelismPoint":
        """Build a point, raising any coordinate below 1 up to 1."""
        return cls(lop=max(1, int(lop)), dop=max(1, int(dop)))


class CostEstimate(BaseModel):
    """Cost model output for one ParallelismPoint."""

    model_config = ConfigDict(frozen=True)

    point: ParallelismPoint
    round_cost: float = Field(..., description="Per-partition processing time incl. spill/GC penalty")
    stage_cost: float = Field(..., description="round_cost normalized by parallel capacity")
    penalty: float = Field(..., description="Memory demand / memory budget")

    def is_feasible(
        self,
        low: float = FEASIBLE_PENALTY_MIN,
        high: float = FEASIBLE_PENALTY_MAX,
    ) -> bool:
        return low < self.penalty < high


class WeightedCandidate(BaseModel):
    """A sampled key and the number of real records it stands in for."""

    model_config = ConfigDict(frozen=True)

    key: Any
    weight: float = Field(..., ge=0, description="Inverse sampling probability")


class PartitionSketch(BaseModel):
    """Reservoir sample of one input partition, as returned by a Sketcher."""

    model_config = ConfigDict(frozen=True)

    partition_id: int = Field(..., ge=0)
    item_count: int = Field(..., ge=0, description="Records seen in the partition")
    sample: list[Any] = Field(default_factory=list)


class ExecutionConfig(BaseModel):
    """
    Execution settings read before a stage and the LoP/DoP published after prediction.

    Unset executor/core counts default to 1; that degrades the estimate but is not an error.
    """

    model_config = ConfigDict(validate_assignment=True)

    executor_memory_mb: Optional[int] = Field(
        default=None,
        ge=1,
        description="spark.executor.memory in MB (default 1024 when unset)",
    )
    memory_fraction: float = Field(
        default=MEMORY_FRACTION_DEFAULT,
        gt=0,
        le=1.0,
        description="Fraction of usable heap for execution and storage",
    )
    reserved_memory_mb: int = Field(
        default=RESERVED_MEMORY_MB,
        ge=0,
        description="System-reserved heap in MB",
    )
    total_executors: Optional[int] = Field(default=None, ge=1)
    total_cores: Optional[int] = Field(default=None, ge=1)
    estimated_input_size_bytes: Optional[float] = Field(default=None, ge=0)
    lop: Optional[int] = Field(default=None, ge=1, description="Published partition count")
    dop: Optional[int] = Field(default=None, ge=1, description="Published threads per executor")

    @classmethod
    def from_spark_conf(cls, conf: Mapping[str, Any]) -> "ExecutionConfig":
        """Read the relevant entries from a SparkConf-like mapping of string values."""
        memory = conf.get("spark.executor.memory")
        executors = conf.get("spark.total.executor.number")
        cores = conf.get("spark.total.core.number")
        fraction = conf.get("spark.memory.fraction")
        return cls(
            executor_memory_mb=memory_string_to_mb(str(memory)) if memory is not None else None,
            memory_fraction=float(fraction) if fraction is not None else MEMORY_FRACTION_DEFAULT,
            total_executors=int(executors) if executors is not None else None,
            total_cores=int(cores) if cores is not None else None,
        )

    def get_executor_memory_mb(self) -> int:
        """Usable execution memory per executor: (heap - reserved) * fraction, truncated."""
        heap = self.executor_memory_mb or EXECUTOR_MEMORY_MB_DEFAULT
        usable = int((heap - self.reserved_memory_mb) * self.memory_fraction)
        if usable <= 0:
            raise InvalidConfigurationError(
                f"Executor memory {heap} MB leaves no usable memory after reserving "
                f"{self.reserved_memory_mb} MB"
            )
        return usable

    def get_memory_budget_bytes(self) -> float:
        return float(self.get_executor_memory_mb()) * 1024 * 1024

    def get_total_executors(self) -> int:
        return self.total_executors or TOTAL_EXECUTORS_DEFAULT

    def get_total_cores(self) -> int:
        return self.total_cores or TOTAL_CORES_DEFAULT

    def get_estimated_input_size_bytes(self) -> float:
        return self.estimated_input_size_bytes or 0.0

    def set_parallelism(self, point: ParallelismPoint) -> None:
        """Publish the chosen LoP/DoP for the upcoming stage."""
        self.lop = point.lop
        self.dop = point.dop


class CostInputs(BaseModel):
    """
    Snapshot of everything the cost model needs for one prediction.

    A zero, negative or non-finite data size is accepted and means "no signal";
    the memory budget must be positive.
    """

    model_config = ConfigDict(frozen=True)

    data_size_bytes: float = Field(..., description="Estimated bytes processed by the stage")
    memory_budget_bytes: float = Field(..., gt=0, description="Execution memory per executor")
    total_cores: int = Field(default=TOTAL_CORES_DEFAULT, ge=1)
    total_executors: int = Field(default=TOTAL_EXECUTORS_DEFAULT, ge=1)

    def __init__(self, **data: Any):
        budget = data.get("memory_budget_bytes")
        if isinstance(budget, (int, float)) and not budget > 0:
            raise InvalidConfigurationError(
                f"Memory budget must be positive but found {budget}."
            )
        super().__init__(**data)

    @classmethod
    def from_config(
        cls,
        config: ExecutionConfig,
        data_size_bytes: Optional[float] = None,
    ) -> "CostInputs":
        """Snapshot config; data_size_bytes overrides the configured input size estimate."""
        return cls(
            data_size_bytes=(
                config.get_estimated_input_size_bytes() if data_size_bytes is None else data_size_bytes
            ),
            memory_budget_bytes=config.get_memory_budget_bytes(),
            total_cores=config.get_total_cores(),
            total_executors=config.get_total_executors(),
        )
