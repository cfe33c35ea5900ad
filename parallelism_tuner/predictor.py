"""
LoP/DoP predictor for a single stage.

Seeds (LoP, DoP) from the memory budget and core count, then walks a
halve/double neighborhood of the 2-D parameter space until the chosen memory
penalty stops changing. The walk is a pure step function iterated under a hard
iteration cap.
"""

import logging
import math
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from parallelism_tuner.config import (
    CostEstimate,
    CostInputs,
    ExecutionConfig,
    ParallelismPoint,
    WeightedCandidate,
)
from parallelism_tuner.constants import (
    DATA_SIZE_FAN_OUT,
    DOP_CONF_KEY,
    FEASIBLE_PENALTY_MAX,
    FEASIBLE_PENALTY_MIN,
    KV_PAIR_BYTES,
    LOP_CLAMP_THRESHOLD,
    LOP_CLAMP_VALUE,
    LOP_CONF_KEYS,
    MAX_SEARCH_ITERATIONS,
    SEARCH_REPEAT_LIMIT,
)
from parallelism_tuner.formulas import (
    clamp_point,
    estimate_cost,
    estimate_data_size_bytes,
    neighborhood,
    seed_point,
)

logger = logging.getLogger("parallelism_tuner")


class SearchState(BaseModel):
    """Loop state threaded through search_step."""

    model_config = ConfigDict(frozen=True)

    current: CostEstimate
    previous_penalty: float
    repeats: int = 0
    iterations: int = 0
    converged: bool = False


def _better(candidate: CostEstimate, incumbent: CostEstimate, prefer_high_penalty: bool) -> bool:
    if candidate.round_cost != incumbent.round_cost:
        return candidate.round_cost < incumbent.round_cost
    if candidate.stage_cost != incumbent.stage_cost:
        return candidate.stage_cost < incumbent.stage_cost
    if prefer_high_penalty:
        return candidate.penalty > incumbent.penalty
    return candidate.penalty < incumbent.penalty


def select_best_neighbor(
    current: CostEstimate,
    neighbors: Sequence[CostEstimate],
    feasible_low: float = FEASIBLE_PENALTY_MIN,
    feasible_high: float = FEASIBLE_PENALTY_MAX,
) -> CostEstimate:
    """
    Pick the move from current.

    Neighbors with a penalty inside (feasible_low, feasible_high) are considered
    first; if there are none, every neighbor is. A neighbor must beat the
    current point on (round_cost, stage_cost, penalty) to be chosen. Among
    feasible neighbors the larger penalty wins a tie, otherwise the smaller.
    Returns current itself when nothing beats it.
    """
    feasible = [n for n in neighbors if n.is_feasible(feasible_low, feasible_high)]
    pool = feasible or list(neighbors)
    prefer_high_penalty = bool(feasible)
    best = current
    for candidate in pool:
        if _better(candidate, best, prefer_high_penalty):
            best = candidate
    return best


def search_step(
    inputs: CostInputs,
    state: SearchState,
    *,
    feasible_low: float = FEASIBLE_PENALTY_MIN,
    feasible_high: float = FEASIBLE_PENALTY_MAX,
    repeat_limit: int = SEARCH_REPEAT_LIMIT,
) -> SearchState:
    """
    One iteration of the local search.

    If the chosen penalty equals the previous one repeat_limit times in a row
    the search is converged and the current point is kept.
    """
    neighbors = [estimate_cost(inputs, p) for p in neighborhood(state.current.point)]
    best = select_best_neighbor(state.current, neighbors, feasible_low, feasible_high)
    repeats = state.repeats + 1 if best.penalty == state.previous_penalty else 0
    if repeats >= repeat_limit:
        return state.model_copy(
            update={"repeats": repeats, "iterations": state.iterations + 1, "converged": True}
        )
    return SearchState(
        current=best,
        previous_penalty=best.penalty,
        repeats=repeats,
        iterations=state.iterations + 1,
    )


def has_signal(inputs: CostInputs) -> bool:
    """False when the data size cannot drive the cost model (empty or broken sample)."""
    return math.isfinite(inputs.data_size_bytes) and inputs.data_size_bytes > 0


class Prediction:
    """Result of a prediction: final point + seed + search diagnostics + explanation."""

    def __init__(
        self,
        point: ParallelismPoint,
        seed: ParallelismPoint,
        estimate: Optional[CostEstimate],
        iterations: int,
        converged: bool,
        clamped: bool,
        searched: bool,
        explanation: list[str],
    ):
        self.point = point
        self.seed = seed
        self.estimate = estimate
        self.iterations = iterations
        self.converged = converged
        self.clamped = clamped
        self.searched = searched
        self.explanation = explanation

    @property
    def lop(self) -> int:
        return self.point.lop

    @property
    def dop(self) -> int:
        return self.point.dop

    def to_spark_config_dict(self) -> dict[str, Any]:
        """Flatten to a dict suitable for SparkConf or spark.conf."""
        out: dict[str, Any] = {key: str(self.point.lop) for key in LOP_CONF_KEYS}
        out[DOP_CONF_KEY] = str(self.point.dop)
        return out


class ParallelismPredictor:
    """
    Predicts the (LoP, DoP) pair minimizing estimated stage latency and memory pressure.

    Inputs:
        - CostInputs (data size, memory budget, total cores, total executors)
          or a weighted key sample plus ExecutionConfig

    Outputs:
        - Prediction with the chosen point, the seed and an explanation of each step
    """

    def __init__(self, limits: Optional[dict[str, Any]] = None):
        """
        Args:
            limits: Optional overrides for constants (e.g. max_search_iterations, lop_clamp_value).
                    If None, uses defaults from constants module.
        """
        self._limits = limits or {}

    def _get(self, key: str, default: Any) -> Any:
        return self._limits.get(key, default)

    def predict(self, inputs: CostInputs) -> Prediction:
        """
        Run seed -> local search -> clamp.

        Never mutates inputs and keeps no state between calls.
        """
        feasible_low = self._get("feasible_penalty_min", FEASIBLE_PENALTY_MIN)
        feasible_high = self._get("feasible_penalty_max", FEASIBLE_PENALTY_MAX)
        repeat_limit = self._get("search_repeat_limit", SEARCH_REPEAT_LIMIT)
        max_iterations = self._get("max_search_iterations", MAX_SEARCH_ITERATIONS)

        explanation: list[str] = []
        seed, lines = seed_point(inputs)
        explanation.extend(lines)

        if not has_signal(inputs):
            explanation.append(
                f"No data size signal ({inputs.data_size_bytes}); keeping seed "
                f"lop={seed.lop}, dop={seed.dop}"
            )
            return Prediction(
                point=seed,
                seed=seed,
                estimate=None,
                iterations=0,
                converged=True,
                clamped=False,
                searched=False,
                explanation=explanation,
            )

        start = estimate_cost(inputs, seed)
        state = SearchState(current=start, previous_penalty=start.penalty)
        explanation.append(
            f"Start: lop={seed.lop}, dop={seed.dop}, round={state.current.round_cost:.4g}, "
            f"stage={state.current.stage_cost:.4g}, penalty={state.current.penalty:.4g}"
        )
        while not state.converged and state.iterations < max_iterations:
            state = search_step(
                inputs,
                state,
                feasible_low=feasible_low,
                feasible_high=feasible_high,
                repeat_limit=repeat_limit,
            )
            cur = state.current
            logger.debug(
                "search iteration=%s lop=%s dop=%s round=%s stage=%s penalty=%s repeats=%s",
                state.iterations,
                cur.point.lop,
                cur.point.dop,
                cur.round_cost,
                cur.stage_cost,
                cur.penalty,
                state.repeats,
            )

        if state.converged:
            explanation.append(
                f"Converged after {state.iterations} iterations at lop={state.current.point.lop}, "
                f"dop={state.current.point.dop} (penalty {state.current.penalty:.4g} repeated)"
            )
        else:
            logger.warning(
                "search hit iteration cap %s without converging; using lop=%s dop=%s",
                max_iterations,
                state.current.point.lop,
                state.current.point.dop,
            )
            explanation.append(
                f"Stopped at iteration cap {max_iterations}: lop={state.current.point.lop}, "
                f"dop={state.current.point.dop}"
            )

        point, lines = clamp_point(
            state.current.point,
            inputs.total_cores,
            threshold=self._get("lop_clamp_threshold", LOP_CLAMP_THRESHOLD),
            clamp_value=self._get("lop_clamp_value", LOP_CLAMP_VALUE),
        )
        explanation.extend(lines)
        clamped = bool(lines)
        if clamped:
            logger.warning("prediction clamped: %s", lines[0])

        return Prediction(
            point=point,
            seed=seed,
            estimate=estimate_cost(inputs, point) if clamped else state.current,
            iterations=state.iterations,
            converged=state.converged,
            clamped=clamped,
            searched=True,
            explanation=explanation,
        )

    def predict_from_sample(
        self,
        sample_size: int,
        per_key_weight: float,
        config: ExecutionConfig,
    ) -> Prediction:
        """Estimate the data size from a weighted sample description, then predict."""
        data_size, lines = estimate_data_size_bytes(
            sample_size,
            per_key_weight,
            kv_pair_bytes=self._get("kv_pair_bytes", KV_PAIR_BYTES),
            fan_out=self._get("data_size_fan_out", DATA_SIZE_FAN_OUT),
        )
        prediction = self.predict(CostInputs.from_config(config, data_size_bytes=data_size))
        prediction.explanation[:0] = lines
        return prediction

    def predict_from_candidates(
        self,
        candidates: Sequence[WeightedCandidate],
        config: ExecutionConfig,
    ) -> Prediction:
        """Same as predict_from_sample() using the mean candidate weight."""
        size = len(candidates)
        mean_weight = sum(c.weight for c in candidates) / size if size else 0.0
        return self.predict_from_sample(size, mean_weight, config)
