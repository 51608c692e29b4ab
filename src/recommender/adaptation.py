"""
Outcome Adapter.

Closes the feedback loop after a recommended question is attempted:

1. Score how well the recommendation's expected outcome predicted reality
2. Append a RecommendationRecord
3. Update the strategy's running accuracy
4. Nudge the learner's personalized weights for that strategy

All shared state lives in AdaptationStore behind a threading.Lock, with a
bounded retention policy (last N records per learner, at most M learners,
least-recently-touched learner evicted first).
"""
from __future__ import annotations

import math
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from statistics import mean
from typing import Callable, Iterable, Optional

from loguru import logger

from src.recommender.config import EngineConfig
from src.recommender.models import (
    FactorType,
    LearnerState,
    PersonalizedInsights,
    QuestionOutcome,
    QuestionRecommendation,
    RecommendationRecord,
    StrategyMetrics,
    StrategyWeights,
)
from src.recommender.strategies import StrategyRegistry

MASTERY_DEVIATION_SCALE = 0.2
ENGAGEMENT_DEVIATION_SCALE = 2.0
MAX_WEIGHT_STEP = 0.05
MIN_WEIGHT = 0.01
MAX_WEIGHT = 1.0
MIN_SAMPLES_FOR_INSIGHTS = 5

# Weight field -> reasoning factor carrying its sub-score
WEIGHT_FACTORS = {
    "mastery_priority": FactorType.MASTERY_LEVEL,
    "difficulty_optimization": FactorType.RECENT_PERFORMANCE,
    "time_constraints": FactorType.TIME_PRESSURE,
    "engagement_factor": FactorType.ENGAGEMENT,
    "stress_consideration": FactorType.STRESS_LEVEL,
    "prerequisite_importance": FactorType.PREREQUISITE,
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# =============================================================================
# STATE
# =============================================================================


@dataclass
class _LearnerAdaptation:
    records: deque
    served: OrderedDict = field(default_factory=OrderedDict)
    # strategy name -> personalized weights / number of updates folded in
    weights: dict = field(default_factory=dict)
    weight_updates: dict = field(default_factory=dict)


class AdaptationStore:
    """Thread-safe owner of adaptation history and aggregates."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._lock = threading.Lock()
        self._learners: OrderedDict[str, _LearnerAdaptation] = OrderedDict()
        self._strategies: dict[str, StrategyMetrics] = {}

    def _touch(self, learner_id: str) -> _LearnerAdaptation:
        """Get-or-create learner state and mark it most recently used. Caller holds the lock."""
        state = self._learners.get(learner_id)
        if state is None:
            state = _LearnerAdaptation(records=deque(maxlen=self.config.history_retention))
            self._learners[learner_id] = state
        self._learners.move_to_end(learner_id)

        while len(self._learners) > self.config.max_tracked_learners:
            evicted, _ = self._learners.popitem(last=False)
            logger.debug(f"Evicted adaptation state for {evicted}")
        return state

    # Served log

    def record_served(self, learner_id: str, recommendations: Iterable[QuestionRecommendation]) -> None:
        with self._lock:
            state = self._touch(learner_id)
            for recommendation in recommendations:
                state.served[recommendation.question_id] = recommendation
                state.served.move_to_end(recommendation.question_id)
            while len(state.served) > self.config.history_retention:
                state.served.popitem(last=False)

    def served_recommendation(self, learner_id: str, question_id: str) -> Optional[QuestionRecommendation]:
        with self._lock:
            state = self._learners.get(learner_id)
            return state.served.get(question_id) if state else None

    # Records

    def append_record(self, record: RecommendationRecord) -> None:
        with self._lock:
            self._touch(record.learner_id).records.append(record)

    def records(self, learner_id: str) -> list[RecommendationRecord]:
        with self._lock:
            state = self._learners.get(learner_id)
            return list(state.records) if state else []

    # Strategy aggregates

    def update_strategy(self, strategy_name: str, accuracy: float) -> StrategyMetrics:
        """Fold one accuracy sample into the strategy's running mean."""
        with self._lock:
            metrics = self._strategies.setdefault(strategy_name, StrategyMetrics())
            metrics.total_recommendations += 1
            metrics.average_accuracy += (accuracy - metrics.average_accuracy) / metrics.total_recommendations
            return replace(metrics)

    def strategy_metrics(self, strategy_name: str) -> StrategyMetrics:
        with self._lock:
            return replace(self._strategies.get(strategy_name, StrategyMetrics()))

    # Personalized weights

    def personalized_weights(self, learner_id: str, strategy_name: str) -> Optional[StrategyWeights]:
        with self._lock:
            state = self._learners.get(learner_id)
            return state.weights.get(strategy_name) if state else None

    def all_personalized_weights(self, learner_id: str) -> dict[str, StrategyWeights]:
        with self._lock:
            state = self._learners.get(learner_id)
            return dict(state.weights) if state else {}

    def update_weights(
        self,
        learner_id: str,
        strategy_name: str,
        base: StrategyWeights,
        update: Callable[[StrategyWeights, int], StrategyWeights],
    ) -> StrategyWeights:
        """
        Apply `update(current, samples_so_far)` atomically to one strategy's weights.

        The first update for a (learner, strategy) pair starts from `base`.
        """
        with self._lock:
            state = self._touch(learner_id)
            current = state.weights.get(strategy_name, base)
            samples = state.weight_updates.get(strategy_name, 0)
            state.weights[strategy_name] = update(current, samples)
            state.weight_updates[strategy_name] = samples + 1
            return state.weights[strategy_name]

    def tracked_learners(self) -> int:
        with self._lock:
            return len(self._learners)


# =============================================================================
# ADAPTER
# =============================================================================


def prediction_accuracy(
    recommendation: QuestionRecommendation,
    outcome: QuestionOutcome,
    learner_state: LearnerState,
) -> float:
    """1 minus the mean normalized deviation between expected and actual outcome."""
    expected = recommendation.expected_outcome
    deviations = [abs(expected.success_probability - (1.0 if outcome.correct else 0.0))]

    shared = [s for s in expected.mastery_improvement if s in outcome.mastery_improvement]
    if shared:
        mastery_dev = mean(
            abs(expected.mastery_improvement[s] - outcome.mastery_improvement[s]) for s in shared
        )
        deviations.append(_clamp(mastery_dev / MASTERY_DEVIATION_SCALE))

    actual_change = outcome.engagement_level - learner_state.engagement_level
    deviations.append(
        _clamp(abs(expected.engagement_change - actual_change) / ENGAGEMENT_DEVIATION_SCALE)
    )
    return _clamp(1.0 - mean(deviations))


def adapt_weights(
    weights: StrategyWeights,
    factor_values: dict[str, float],
    error: float,
    samples: int,
    rate: float,
) -> StrategyWeights:
    """
    One bounded gradient-style step on the weight vector.

    Factors that scored above the mean for this recommendation gain weight
    when the outcome beat the prediction (error > 0) and lose it otherwise.
    Each step is capped, each weight kept in [0.01, 1], and the vector is
    renormalized to its original sum.
    """
    current = weights.as_dict()
    original_total = sum(current.values())
    avg_value = mean(factor_values.values())
    step = rate / math.sqrt(1 + samples)

    updated = {}
    for name, weight in current.items():
        delta = step * error * (factor_values[name] - avg_value)
        delta = max(-MAX_WEIGHT_STEP, min(MAX_WEIGHT_STEP, delta))
        updated[name] = _clamp(weight + delta, MIN_WEIGHT, MAX_WEIGHT)

    new_total = sum(updated.values())
    return StrategyWeights.from_dict({k: v * original_total / new_total for k, v in updated.items()})


class OutcomeAdapter:
    """Learns from recommendation outcomes."""

    def __init__(
        self,
        store: AdaptationStore,
        registry: Optional[StrategyRegistry] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.registry = registry or StrategyRegistry()
        self.config = config or EngineConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def adapt_from_outcome(
        self,
        recommendation: QuestionRecommendation,
        actual_outcome: QuestionOutcome,
        learner_state: LearnerState,
    ) -> None:
        learner_id = learner_state.learner_id
        strategy_name = recommendation.strategy_name
        strategy = self.registry.get(strategy_name)

        if strategy is None:
            logger.warning(
                f"Dropping outcome for {learner_id}: unknown strategy '{strategy_name}' "
                f"on question {recommendation.question_id}"
            )
            return
        if self.store.served_recommendation(learner_id, recommendation.question_id) is None:
            logger.warning(
                f"Dropping outcome for {learner_id}: question {recommendation.question_id} "
                "was never recommended to this learner"
            )
            return

        accuracy = prediction_accuracy(recommendation, actual_outcome, learner_state)
        self.store.append_record(
            RecommendationRecord(
                recommendation=recommendation,
                actual_outcome=actual_outcome,
                timestamp=self.clock(),
                learner_id=learner_id,
                accuracy=accuracy,
            )
        )

        metrics = self.store.update_strategy(strategy_name, accuracy)

        factor_values = self._factor_values(recommendation)
        error = (1.0 if actual_outcome.correct else 0.0) - recommendation.expected_outcome.success_probability
        self.store.update_weights(
            learner_id,
            strategy_name,
            strategy.weights,
            lambda current, samples: adapt_weights(
                current, factor_values, error, samples, self.config.adaptation_rate
            ),
        )

        logger.info(
            f"Adapted from outcome for {learner_id}: accuracy={accuracy:.3f}, "
            f"strategy={strategy_name} avg={metrics.average_accuracy:.3f}"
        )

    def _factor_values(self, recommendation: QuestionRecommendation) -> dict[str, float]:
        by_type = {f.type: f.value for f in recommendation.reasoning.factors}
        metrics = recommendation.adaptive_metrics
        fallback = {
            "mastery_priority": metrics.mastery_gap,
            "difficulty_optimization": metrics.difficulty_fit,
            "time_constraints": metrics.time_efficiency,
            "engagement_factor": metrics.engagement_boost,
            "stress_consideration": 0.5,
            "prerequisite_importance": metrics.prerequisite_met,
        }
        return {name: by_type.get(ftype, fallback[name]) for name, ftype in WEIGHT_FACTORS.items()}

    # =========================================================================
    # Insights
    # =========================================================================

    def get_personalized_insights(self, learner_id: str) -> PersonalizedInsights:
        records = self.store.records(learner_id)
        if not records:
            return PersonalizedInsights(
                learner_id=learner_id,
                total_recommendations=0,
                average_accuracy=0.0,
                personalized_weights=self.store.all_personalized_weights(learner_id),
                next_optimizations=["collect outcomes to personalize recommendations"],
            )

        best = self._best_strategies(records)
        patterns = self._learning_patterns(records)
        average = mean(r.accuracy for r in records)
        return PersonalizedInsights(
            learner_id=learner_id,
            total_recommendations=len(records),
            average_accuracy=average,
            best_strategies=best,
            learning_patterns=patterns,
            personalized_weights=self.store.all_personalized_weights(learner_id),
            next_optimizations=self._suggest_optimizations(records, average, best, patterns),
        )

    def _best_strategies(self, records: list[RecommendationRecord]) -> list[str]:
        by_strategy: dict[str, list[float]] = {}
        for record in records:
            by_strategy.setdefault(record.recommendation.strategy_name, []).append(record.accuracy)
        ranked = sorted(by_strategy.items(), key=lambda item: (-mean(item[1]), item[0]))
        return [name for name, _ in ranked[:3]]

    def _learning_patterns(self, records: list[RecommendationRecord]) -> list[str]:
        patterns = []
        success = mean(1.0 if r.actual_outcome.correct else 0.0 for r in records)
        if success >= 0.8:
            patterns.append("high_success_rate")
        elif success <= 0.4:
            patterns.append("low_success_rate")

        pace = [
            r.actual_outcome.time_spent_seconds / r.recommendation.expected_outcome.time_to_complete
            for r in records
            if r.recommendation.expected_outcome.time_to_complete > 0 and r.actual_outcome.time_spent_seconds > 0
        ]
        if pace:
            if mean(pace) < 0.8:
                patterns.append("faster_than_expected")
            elif mean(pace) > 1.2:
                patterns.append("slower_than_expected")

        if mean(r.actual_outcome.hints_used for r in records) >= 1:
            patterns.append("hint_reliant")
        return patterns

    def _suggest_optimizations(
        self,
        records: list[RecommendationRecord],
        average: float,
        best: list[str],
        patterns: list[str],
    ) -> list[str]:
        suggestions = []
        if len(records) < MIN_SAMPLES_FOR_INSIGHTS:
            suggestions.append("collect more outcomes before relying on personalized weights")
        if average < 0.6:
            suggestions.append("recalibrate success predictions for this learner")
        if "slower_than_expected" in patterns:
            suggestions.append("prefer shorter questions or lower difficulty")
        if "high_success_rate" in patterns:
            suggestions.append("raise the difficulty stretch")
        if best:
            suggestions.append(f"favor the {best[0]} strategy")
        return suggestions
