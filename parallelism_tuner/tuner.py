"""
ParallelismTuner: predict LoP/DoP for a stage and apply it.

Uses ParallelismPredictor and the range partitioner to publish the chosen
parameters into ExecutionConfig or a SparkSession, with structured logging.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence

from parallelism_tuner.config import (
    CostInputs,
    ExecutionConfig,
    SortOrder,
    WeightedCandidate,
)
from parallelism_tuner.partitioner import RangePartitioner
from parallelism_tuner.predictor import ParallelismPredictor, Prediction

if TYPE_CHECKING:
    from pyspark.sql import DataFrame, SparkSession


def _get_tuner_logger() -> logging.Logger:
    return logging.getLogger("parallelism_tuner")


class ParallelismTuner:
    """
    Entry point used by the partition-planning phase of a job.

    - predict(config, candidates): choose (LoP, DoP) and publish it into config.
    - plan_range_partitioning(candidates, partitions, config): predicted LoP + range bounds.
    - tune_spark_session(spark, prediction): apply LoP/DoP to a SparkSession.
    - repartition_by_range(df, prediction, *cols): range-repartition a DataFrame to LoP.
    """

    def __init__(
        self,
        predictor: Optional[ParallelismPredictor] = None,
        limits: Optional[dict[str, Any]] = None,
    ):
        self._predictor = predictor or ParallelismPredictor(limits=limits)
        self._log = _get_tuner_logger()

    def predict(
        self,
        config: ExecutionConfig,
        candidates: Optional[Sequence[WeightedCandidate]] = None,
        *,
        publish: bool = True,
    ) -> Prediction:
        """
        Predict (LoP, DoP) from a weighted sample, or from the configured input size
        when no sample is given.

        Args:
            config: Execution settings; receives the chosen LoP/DoP when publish is True.
            candidates: Weighted key sample of the stage input.
            publish: If True, write the result into config.

        Returns:
            Prediction with point, seed, diagnostics and explanation.
        """
        if candidates is not None:
            prediction = self._predictor.predict_from_candidates(candidates, config)
        else:
            prediction = self._predictor.predict(CostInputs.from_config(config))

        for line in prediction.explanation:
            self._log.info("predict: %s", line)
        if publish:
            config.set_parallelism(prediction.point)
            self._log.info("predict: published lop=%s dop=%s", prediction.lop, prediction.dop)
        return prediction

    def plan_range_partitioning(
        self,
        candidates: Sequence[WeightedCandidate],
        partitions: int,
        config: ExecutionConfig,
        *,
        order: SortOrder = SortOrder.ASCENDING,
    ) -> RangePartitioner:
        """Predict LoP/DoP, publish it into config and cut range bounds for the predicted LoP."""
        return RangePartitioner.from_candidates(
            candidates,
            partitions,
            config,
            predictor=self._predictor,
            order=order,
        )

    def tune_spark_session(
        self,
        spark: "SparkSession",
        prediction: Prediction,
        *,
        apply_config: bool = True,
    ) -> dict[str, Any]:
        """
        Apply the predicted LoP (default/shuffle parallelism) and DoP (executor cores).

        Args:
            spark: Active SparkSession.
            prediction: Result of predict().
            apply_config: If True, set spark.conf entries; if False, only return them.

        Returns:
            The config entries derived from the prediction.
        """
        conf = prediction.to_spark_config_dict()
        if prediction.clamped:
            self._log.warning(
                "tune_session safety: prediction was clamped to lop=%s dop=%s",
                prediction.lop,
                prediction.dop,
            )
        if apply_config:
            for k, v in conf.items():
                spark.conf.set(k, v)
            self._log.info("tune_session: applied %s config entries", len(conf))
        return conf

    def repartition_by_range(
        self,
        df: "DataFrame",
        prediction: Prediction,
        *cols: str,
    ) -> "DataFrame":
        """Range-repartition df into prediction.lop partitions on cols (no-op if already there)."""
        current_partitions = df.rdd.getNumPartitions()
        self._log.info(
            "repartition: recommended_partitions=%s current_partitions=%s",
            prediction.lop,
            current_partitions,
        )
        if prediction.lop == current_partitions:
            self._log.info("repartition: no repartition needed")
            return df
        out = df.repartitionByRange(prediction.lop, *cols)
        self._log.info("repartition: applied repartitionByRange(%s)", prediction.lop)
        return out
