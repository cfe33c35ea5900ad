"""
Example job using ParallelismTuner to plan a range-partitioned stage.

Demonstrates:
  - Predicting LoP/DoP from config alone (e.g. for job submission)
  - Cutting range bounds from a weighted key sample
  - Applying the prediction to a SparkSession and range-repartitioning a DataFrame

Run on a cluster with PySpark 3.x installed, or with spark-submit.
"""

from __future__ import annotations

import logging
import os
import random

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")

from parallelism_tuner import (
    ExecutionConfig,
    ParallelismTuner,
    WeightedCandidate,
)
from parallelism_tuner.logging_config import configure_parallelism_tuner_logging

# Optional: JSON structured logs for production
# configure_parallelism_tuner_logging(level=logging.INFO, use_json=True)


def main() -> None:
    # --- 1) Execution settings (e.g. from env or spark-defaults) ---
    config = ExecutionConfig.from_spark_conf(
        {
            "spark.executor.memory": os.environ.get("SPARK_EXECUTOR_MEMORY", "8g"),
            "spark.total.executor.number": os.environ.get("SPARK_TOTAL_EXECUTORS", "10"),
            "spark.total.core.number": os.environ.get("SPARK_TOTAL_CORES", "8"),
        }
    )
    config.estimated_input_size_bytes = float(os.environ.get("DATA_SIZE_BYTES", str(50 * 1024**3)))

    tuner = ParallelismTuner()

    # --- 2) Predict from config alone (no Spark session) ---
    prediction = tuner.predict(config, publish=False)
    print("--- Predicted parallelism ---")
    for k, v in prediction.to_spark_config_dict().items():
        print(f"  {k}={v}")
    print("--- Explanation ---")
    for line in prediction.explanation:
        print(f"  {line}")
    if prediction.clamped:
        print("  ! prediction was clamped")

    # --- 3) Range bounds from a weighted sample ---
    rng = random.Random(7)
    candidates = [WeightedCandidate(key=rng.randint(0, 1_000_000), weight=2_000.0) for _ in range(4_000)]
    partitioner = tuner.plan_range_partitioning(candidates, 200, config)
    print(f"  range partitions = {partitioner.num_partitions} (published lop={config.lop}, dop={config.dop})")

    # --- 4) If running inside Spark (e.g. spark-submit), apply and repartition ---
    try:
        from pyspark.sql import SparkSession

        spark = SparkSession.builder.appName("parallelism_tuner_example").getOrCreate()
        assert partitioner.prediction is not None
        tuner.tune_spark_session(spark, partitioner.prediction)

        df = spark.range(0, 10_000_000, numSlices=200).selectExpr("id", "id % 1000003 as key")
        df_planned = tuner.repartition_by_range(df, partitioner.prediction, "key")

        output_path = os.environ.get("OUTPUT_PATH", "/tmp/parallelism_tuner_example")
        df_planned.write.mode("overwrite").parquet(output_path)
        print(f"Wrote range-partitioned DataFrame to {output_path}")

        spark.stop()
    except ImportError:
        print("PySpark not installed; skipping session tune and repartition example.")


if __name__ == "__main__":
    main()
