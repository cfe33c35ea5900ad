"""
Tests for the parallelism tuner (config, formulas, predictor, tuner facade).

No PySpark required; tests use pure Python and Pydantic models.
"""

import io
import json
import logging
import math

import pytest

from parallelism_tuner.config import (
    CostEstimate,
    CostInputs,
    ExecutionConfig,
    InvalidConfigurationError,
    ParallelismPoint,
    WeightedCandidate,
    memory_string_to_mb,
)
from parallelism_tuner.constants import DOP_CONF_KEY, LOP_CONF_KEYS, get_default_limits
from parallelism_tuner.formulas import (
    clamp_point,
    estimate_cost,
    estimate_data_size_bytes,
    nearest_power_of_two,
    neighborhood,
    round_half_up,
    seed_point,
)
from parallelism_tuner.logging_config import (
    StructuredFormatter,
    configure_parallelism_tuner_logging,
)
from parallelism_tuner.predictor import (
    ParallelismPredictor,
    SearchState,
    search_step,
    select_best_neighbor,
)
from parallelism_tuner.tuner import ParallelismTuner

MB = 1024 * 1024


def example_inputs() -> CostInputs:
    return CostInputs(
        data_size_bytes=1e9,
        memory_budget_bytes=6e8,
        total_cores=8,
        total_executors=4,
    )


def est(round_cost: float, stage_cost: float, penalty: float, lop: int = 1, dop: int = 1) -> CostEstimate:
    return CostEstimate(
        point=ParallelismPoint(lop=lop, dop=dop),
        round_cost=round_cost,
        stage_cost=stage_cost,
        penalty=penalty,
    )


# --- Config ---


def test_execution_config_defaults() -> None:
    c = ExecutionConfig()
    assert c.get_total_executors() == 1
    assert c.get_total_cores() == 1
    assert c.get_executor_memory_mb() == 543  # (1024 - 300) * 0.75
    assert c.get_memory_budget_bytes() == 543 * MB
    assert c.get_estimated_input_size_bytes() == 0.0


def test_execution_config_from_spark_conf() -> None:
    c = ExecutionConfig.from_spark_conf(
        {
            "spark.executor.memory": "4g",
            "spark.total.executor.number": "4",
            "spark.total.core.number": "8",
        }
    )
    assert c.executor_memory_mb == 4096
    assert c.get_total_executors() == 4
    assert c.get_total_cores() == 8
    assert c.get_executor_memory_mb() == int((4096 - 300) * 0.75)


def test_execution_config_without_usable_memory_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        ExecutionConfig(executor_memory_mb=300).get_memory_budget_bytes()


def test_execution_config_set_parallelism() -> None:
    c = ExecutionConfig()
    c.set_parallelism(ParallelismPoint(lop=64, dop=4))
    assert (c.lop, c.dop) == (64, 4)


def test_execution_config_validates_assignment() -> None:
    c = ExecutionConfig()
    with pytest.raises(ValueError):
        c.lop = 0
    with pytest.raises(ValueError):
        c.dop = -1
    with pytest.raises(ValueError):
        c.estimated_input_size_bytes = -1
    assert (c.lop, c.dop, c.estimated_input_size_bytes) == (None, None, None)


def test_cost_inputs_reject_non_positive_memory_budget() -> None:
    for budget in (-1, 0, 0.0, float("nan")):
        with pytest.raises(InvalidConfigurationError):
            CostInputs(data_size_bytes=1e9, memory_budget_bytes=budget)


def test_cost_inputs_from_config() -> None:
    config = ExecutionConfig(total_cores=8, total_executors=2, estimated_input_size_bytes=5e8)
    inputs = CostInputs.from_config(config)
    assert inputs.data_size_bytes == 5e8
    assert inputs.total_cores == 8
    assert inputs.total_executors == 2
    assert inputs.memory_budget_bytes == 543 * MB
    assert CostInputs.from_config(config, data_size_bytes=7.0).data_size_bytes == 7.0


def test_parallelism_point_floors_and_validates() -> None:
    assert ParallelismPoint.floored(0, -3) == ParallelismPoint(lop=1, dop=1)
    with pytest.raises(ValueError):
        ParallelismPoint(lop=0, dop=1)


def test_default_limits_cover_search_constants() -> None:
    limits = get_default_limits()
    assert limits["lop_clamp_threshold"] == 1024
    assert limits["lop_clamp_value"] == 128
    assert limits["max_search_iterations"] == 64


# --- Formulas: helpers ---


def test_memory_string_to_mb() -> None:
    assert memory_string_to_mb("512m") == 512
    assert memory_string_to_mb("4g") == 4096
    assert memory_string_to_mb("2gb") == 2048
    assert memory_string_to_mb("1t") == 1024 * 1024
    assert memory_string_to_mb("1048576") == 1  # bytes
    with pytest.raises(InvalidConfigurationError):
        memory_string_to_mb("lots")


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(13.33) == 13
    assert round_half_up(0.49) == 0


def test_nearest_power_of_two() -> None:
    assert nearest_power_of_two(13) == 16
    assert nearest_power_of_two(12) == 16
    assert nearest_power_of_two(11) == 8
    assert nearest_power_of_two(1024) == 1024
    assert nearest_power_of_two(1) == 1
    assert nearest_power_of_two(0) == 1
    assert nearest_power_of_two(float("nan")) == 1


def test_estimate_data_size_bytes() -> None:
    size, expl = estimate_data_size_bytes(100, 2.0)
    assert size == 280800.0
    assert len(expl) == 1


# --- Formulas: seed and cost ---


def test_seed_point_example() -> None:
    # 1e9 * 8 / 6e8 = 13.3 -> 13 -> nearest power of two 16
    seed, expl = seed_point(example_inputs())
    assert seed == ParallelismPoint(lop=16, dop=8)
    assert any("16" in e for e in expl)


def test_seed_point_without_data_is_one_partition() -> None:
    seed, _ = seed_point(CostInputs(data_size_bytes=0, memory_budget_bytes=6e8, total_cores=8))
    assert seed == ParallelismPoint(lop=1, dop=8)


def test_estimate_cost_below_budget() -> None:
    e = estimate_cost(example_inputs(), ParallelismPoint(lop=16, dop=8))
    assert e.round_cost == pytest.approx(6.25e7)
    assert e.stage_cost == pytest.approx(3.125e7)  # 6.25e7 * 16 / (8 * 4)
    assert e.penalty == pytest.approx(5 / 6)
    assert e.is_feasible()


def test_estimate_cost_applies_spill_penalty_over_budget() -> None:
    e = estimate_cost(example_inputs(), ParallelismPoint(lop=8, dop=16))
    b = 1e9 * 16 / (8 * 6e8)
    assert e.penalty == pytest.approx(b)
    assert e.round_cost == pytest.approx(1.25e8 * (1 + b))
    assert not e.is_feasible()


def test_round_cost_monotone_in_data_size() -> None:
    point = ParallelismPoint(lop=16, dop=8)
    previous = -math.inf
    for size in (1e6, 1e8, 5e8, 9.6e8, 1e9, 5e9, 1e11):
        inputs = CostInputs(data_size_bytes=size, memory_budget_bytes=6e8, total_cores=8, total_executors=4)
        cost = estimate_cost(inputs, point).round_cost
        assert cost >= previous
        previous = cost


def test_neighborhood_order_and_floor() -> None:
    assert neighborhood(ParallelismPoint(lop=16, dop=8)) == [
        ParallelismPoint(lop=8, dop=16),
        ParallelismPoint(lop=16, dop=16),
        ParallelismPoint(lop=32, dop=16),
        ParallelismPoint(lop=8, dop=8),
        ParallelismPoint(lop=32, dop=8),
        ParallelismPoint(lop=8, dop=4),
        ParallelismPoint(lop=16, dop=4),
        ParallelismPoint(lop=32, dop=4),
    ]
    for p in neighborhood(ParallelismPoint(lop=1, dop=1)):
        assert p.lop >= 1 and p.dop >= 1


def test_clamp_point() -> None:
    p, expl = clamp_point(ParallelismPoint(lop=2048, dop=4), configured_dop=8)
    assert p == ParallelismPoint(lop=128, dop=8)
    assert len(expl) == 1
    p2, expl2 = clamp_point(ParallelismPoint(lop=1024, dop=4), configured_dop=8)
    assert p2 == ParallelismPoint(lop=1024, dop=4)
    assert expl2 == []


# --- Predictor: neighbor selection ---


def test_select_best_prefers_feasible_over_cheaper_infeasible() -> None:
    current = est(10, 10, 5.0)
    cheap_infeasible = est(1, 1, 3.0)
    feasible = est(8, 8, 0.5)
    assert select_best_neighbor(current, [cheap_infeasible, feasible]) is feasible


def test_select_best_feasible_tie_prefers_larger_penalty() -> None:
    current = est(10, 5, 0.2)
    mid = est(10, 5, 0.5)
    high = est(10, 5, 0.9)
    assert select_best_neighbor(current, [mid, high]) is high


def test_select_best_fallback_tie_prefers_smaller_penalty() -> None:
    current = est(10, 5, 5.0)
    lower = est(10, 5, 3.0)
    higher = est(10, 5, 7.0)
    assert select_best_neighbor(current, [higher, lower]) is lower


def test_select_best_keeps_current_when_nothing_improves() -> None:
    current = est(10, 5, 0.5)
    assert select_best_neighbor(current, [est(20, 5, 0.5), est(10, 6, 0.9)]) is current


def test_search_step_is_pure() -> None:
    inputs = example_inputs()
    start = estimate_cost(inputs, ParallelismPoint(lop=16, dop=8))
    state = SearchState(current=start, previous_penalty=start.penalty)
    first = search_step(inputs, state)
    second = search_step(inputs, state)
    assert first == second
    assert state.iterations == 0
    assert first.current.point == ParallelismPoint(lop=32, dop=16)
    assert first.repeats == 1
    assert not first.converged


# --- Predictor: full predictions ---


def test_predict_example_scenario() -> None:
    # (16, 8) -> (32, 16) keeps penalty 5/6; the next move (64, 32) repeats it again -> stop.
    p = ParallelismPredictor().predict(example_inputs())
    assert p.seed == ParallelismPoint(lop=16, dop=8)
    assert p.point == ParallelismPoint(lop=32, dop=16)
    assert p.iterations == 2
    assert p.converged
    assert p.searched
    assert not p.clamped
    assert p.estimate is not None
    assert p.estimate.round_cost == pytest.approx(3.125e7)
    assert p.estimate.penalty == pytest.approx(5 / 6)


def test_predict_is_idempotent() -> None:
    predictor = ParallelismPredictor()
    a = predictor.predict(example_inputs())
    b = predictor.predict(example_inputs())
    assert a.point == b.point
    assert a.iterations == b.iterations
    assert a.explanation == b.explanation


def test_predict_always_returns_positive_point() -> None:
    predictor = ParallelismPredictor()
    for size in (1.0, 1e3, 1e6, 1e9, 1e12):
        for cores in (1, 3, 16):
            inputs = CostInputs(
                data_size_bytes=size,
                memory_budget_bytes=5e8,
                total_cores=cores,
                total_executors=2,
            )
            p = predictor.predict(inputs)
            assert p.lop >= 1 and p.dop >= 1


def test_predict_clamps_runaway_lop(caplog: pytest.LogCaptureFixture) -> None:
    inputs = CostInputs(data_size_bytes=1e13, memory_budget_bytes=1e8, total_cores=4, total_executors=1)
    with caplog.at_level(logging.WARNING, logger="parallelism_tuner"):
        p = ParallelismPredictor().predict(inputs)
    assert p.clamped
    assert p.point == ParallelismPoint(lop=128, dop=4)
    assert any("clamped" in r.getMessage() for r in caplog.records)


def test_predict_clamp_is_overridable() -> None:
    inputs = CostInputs(data_size_bytes=1e13, memory_budget_bytes=1e8, total_cores=4, total_executors=1)
    p = ParallelismPredictor(limits={"lop_clamp_value": 256}).predict(inputs)
    assert p.point == ParallelismPoint(lop=256, dop=4)


def test_predict_iteration_cap() -> None:
    p = ParallelismPredictor(limits={"max_search_iterations": 1}).predict(example_inputs())
    assert p.iterations == 1
    assert not p.converged
    assert p.point == ParallelismPoint(lop=32, dop=16)


def test_predict_without_signal_keeps_seed() -> None:
    predictor = ParallelismPredictor()
    for size in (0.0, -5.0, float("nan"), float("inf")):
        inputs = CostInputs(data_size_bytes=size, memory_budget_bytes=6e8, total_cores=8, total_executors=4)
        p = predictor.predict(inputs)
        assert not p.searched
        assert p.iterations == 0
        assert p.point == p.seed == ParallelismPoint(lop=1, dop=8)


def test_predict_from_empty_candidates() -> None:
    p = ParallelismPredictor().predict_from_candidates([], ExecutionConfig(total_cores=4))
    assert not p.searched
    assert p.point == ParallelismPoint(lop=1, dop=4)


def test_predict_from_sample() -> None:
    config = ExecutionConfig(total_cores=8, total_executors=2)
    predictor = ParallelismPredictor()
    p = predictor.predict_from_sample(100, 2.0, config)
    direct = predictor.predict(
        CostInputs(
            data_size_bytes=108 * 100 * 2.0 * 13,
            memory_budget_bytes=543 * MB,
            total_cores=8,
            total_executors=2,
        )
    )
    assert p.searched
    assert p.point == direct.point
    assert p.seed == direct.seed
    assert p.explanation[0].startswith("Data size:")
    assert p.explanation[1:] == direct.explanation


def test_prediction_to_spark_config_dict() -> None:
    p = ParallelismPredictor().predict(example_inputs())
    conf = p.to_spark_config_dict()
    for key in LOP_CONF_KEYS:
        assert conf[key] == "32"
    assert conf[DOP_CONF_KEY] == "16"


# --- Tuner ---


class _FakeConf:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        self.values[key] = value


class _FakeSpark:
    def __init__(self) -> None:
        self.conf = _FakeConf()


def test_tuner_predict_publishes_into_config() -> None:
    config = ExecutionConfig(
        executor_memory_mb=4096,
        total_cores=8,
        total_executors=4,
        estimated_input_size_bytes=5e9,
    )
    prediction = ParallelismTuner().predict(config)
    assert prediction.searched
    assert (config.lop, config.dop) == (prediction.lop, prediction.dop)


def test_tuner_predict_without_publish() -> None:
    config = ExecutionConfig(total_cores=2, estimated_input_size_bytes=1e9)
    ParallelismTuner().predict(config, publish=False)
    assert config.lop is None and config.dop is None


def test_tuner_predict_from_candidates() -> None:
    config = ExecutionConfig(total_cores=4, total_executors=2)
    candidates = [WeightedCandidate(key=i, weight=50.0) for i in range(200)]
    prediction = ParallelismTuner().predict(config, candidates)
    assert config.lop == prediction.lop


def test_tune_spark_session_applies_config() -> None:
    spark = _FakeSpark()
    tuner = ParallelismTuner()
    prediction = ParallelismPredictor().predict(example_inputs())
    conf = tuner.tune_spark_session(spark, prediction)
    assert spark.conf.values == conf
    assert spark.conf.values["spark.sql.shuffle.partitions"] == "32"
    assert spark.conf.values["spark.executor.cores"] == "16"


def test_tune_spark_session_dry_run() -> None:
    spark = _FakeSpark()
    prediction = ParallelismPredictor().predict(example_inputs())
    conf = ParallelismTuner().tune_spark_session(spark, prediction, apply_config=False)
    assert spark.conf.values == {}
    assert conf["spark.default.parallelism"] == "32"


# --- Logging ---


def test_structured_formatter_json_and_kv() -> None:
    record = logging.LogRecord("parallelism_tuner", logging.INFO, __file__, 1, "lop=%s", (32,), None)
    payload = json.loads(StructuredFormatter(use_json=True).format(record))
    assert payload == {
        "message": "lop=32",
        "level": "INFO",
        "logger": "parallelism_tuner",
        "fields": {"lop": "32"},
    }
    assert StructuredFormatter(use_json=False).format(record) == (
        "level=INFO logger=parallelism_tuner msg=lop=32"
    )


def test_configure_logging_writes_to_stream() -> None:
    stream = io.StringIO()
    logger = configure_parallelism_tuner_logging(level=logging.INFO, use_json=True, stream=stream)
    try:
        ParallelismTuner().predict(ExecutionConfig(total_cores=2, estimated_input_size_bytes=1e9))
        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert lines
        assert all(line["logger"] == "parallelism_tuner" for line in lines)
        published = [line for line in lines if "published" in line["message"]]
        assert published[0]["fields"].keys() >= {"lop", "dop"}
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
