"""
Recommendation strategies and strategy selection.

Each strategy is a named, immutable weighting of the scoring factors:

    mastery_focused       Targets skills with the lowest mastery
    engagement_focused    Keeps a disengaging learner motivated
    zpd_optimized         Holds the learner at an optimal challenge level
    stress_adaptive       Eases off when the learner is under stress
    concept_mapping       Follows prerequisite chains
    performance_adaptive  Balanced default

StrategySelector scores every registered strategy with a fixed rule set and
returns the best one. Ties resolve in registry order.
"""
from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Iterator, Optional

from loguru import logger

from src.recommender.models import (
    LearningAnalysis,
    LearningContext,
    PriorityArea,
    PriorityType,
    RecommendationStrategy,
    StrategyWeights,
    Urgency,
    ZPDData,
)

if TYPE_CHECKING:
    from src.recommender.adaptation import AdaptationStore


# =============================================================================
# BUILT-IN STRATEGIES
# =============================================================================

MASTERY_FOCUSED = RecommendationStrategy(
    name="mastery_focused",
    display_name="Mastery-Focused Learning",
    description="Targets skills with the lowest mastery probability",
    weights=StrategyWeights(0.5, 0.2, 0.1, 0.1, 0.05, 0.05),
    outcomes=("Improved skill mastery", "Reduced knowledge gaps", "Better test performance"),
    stress_responsive=True,
)

ENGAGEMENT_FOCUSED = RecommendationStrategy(
    name="engagement_focused",
    display_name="Engagement Focused",
    description="Prioritizes engagement and motivation",
    weights=StrategyWeights(0.2, 0.2, 0.1, 0.4, 0.05, 0.05),
    outcomes=("Increased engagement", "Better retention"),
)

ZPD_OPTIMIZED = RecommendationStrategy(
    name="zpd_optimized",
    display_name="Zone of Proximal Development",
    description="Maintains an optimal challenge level",
    weights=StrategyWeights(0.25, 0.4, 0.15, 0.15, 0.03, 0.02),
    outcomes=("Optimal challenge level", "Sustained engagement", "Gradual skill building"),
    stress_responsive=True,
)

STRESS_ADAPTIVE = RecommendationStrategy(
    name="stress_adaptive",
    display_name="Stress-Adaptive Learning",
    description="Adapts to stress levels and emotional state",
    weights=StrategyWeights(0.2, 0.15, 0.15, 0.25, 0.2, 0.05),
    outcomes=("Reduced stress", "Maintained engagement", "Emotional regulation"),
    stress_responsive=True,
)

CONCEPT_MAPPING = RecommendationStrategy(
    name="concept_mapping",
    display_name="Concept Mapping Learning",
    description="Follows concept dependencies and builds knowledge systematically",
    weights=StrategyWeights(0.25, 0.2, 0.1, 0.15, 0.05, 0.25),
    outcomes=("Strong foundation", "Conceptual understanding", "Reduced confusion"),
)

PERFORMANCE_ADAPTIVE = RecommendationStrategy(
    name="performance_adaptive",
    display_name="Performance-Adaptive Mixed",
    description="Balances all factors based on recent performance",
    weights=StrategyWeights(0.3, 0.25, 0.15, 0.15, 0.1, 0.05),
    outcomes=("Personalized learning", "Optimal adaptation", "Balanced growth"),
    stress_responsive=True,
    time_aware=True,
)

BUILTIN_STRATEGIES = (
    MASTERY_FOCUSED,
    ENGAGEMENT_FOCUSED,
    ZPD_OPTIMIZED,
    STRESS_ADAPTIVE,
    CONCEPT_MAPPING,
    PERFORMANCE_ADAPTIVE,
)

DEFAULT_STRATEGY_NAME = PERFORMANCE_ADAPTIVE.name


class StrategyRegistry:
    """Ordered name -> strategy lookup."""

    def __init__(self, strategies: tuple[RecommendationStrategy, ...] = BUILTIN_STRATEGIES):
        self._strategies: dict[str, RecommendationStrategy] = {}
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: RecommendationStrategy) -> None:
        self._strategies[strategy.name] = strategy

    def get(self, name: str) -> Optional[RecommendationStrategy]:
        return self._strategies.get(name)

    def names(self) -> list[str]:
        return list(self._strategies)

    def __contains__(self, name: object) -> bool:
        return name in self._strategies

    def __iter__(self) -> Iterator[RecommendationStrategy]:
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)


# =============================================================================
# SELECTION
# =============================================================================

LOW_STRESS = 0.4
HIGH_STRESS = 0.6
VERY_HIGH_STRESS = 0.7
TIME_PRESSURE_SECONDS = 300
LOW_AVERAGE_MASTERY = 0.6
DECLINING_ENGAGEMENT = -0.1
MIN_HISTORY_SAMPLES = 5


class StrategySelector:
    """Deterministic rule-based choice of strategy for one call."""

    def __init__(
        self,
        registry: Optional[StrategyRegistry] = None,
        adaptation_store: Optional["AdaptationStore"] = None,
    ):
        self.registry = registry or StrategyRegistry()
        self.store = adaptation_store

    def score_strategies(
        self,
        analysis: LearningAnalysis,
        zpd_data: ZPDData,
        priority_areas: list[PriorityArea],
        context: LearningContext,
    ) -> dict[str, float]:
        stress = context.stress_level
        large_gaps = analysis.average_mastery < LOW_AVERAGE_MASTERY or any(
            a.type == PriorityType.SKILL and a.urgency == Urgency.HIGH for a in priority_areas
        )
        has_prerequisite_gaps = any(a.type == PriorityType.PREREQUISITE for a in priority_areas)
        in_productive_zone = 0.5 <= analysis.recent_accuracy <= 0.8 and stress < HIGH_STRESS

        scores: dict[str, float] = {}
        for strategy in self.registry:
            score = 0.0
            if strategy.name == MASTERY_FOCUSED.name and stress < LOW_STRESS and large_gaps:
                score += 1.0
            if strategy.name == ENGAGEMENT_FOCUSED.name and analysis.engagement_trend < DECLINING_ENGAGEMENT:
                score += 1.0
            if strategy.name == STRESS_ADAPTIVE.name and stress > HIGH_STRESS:
                score += 1.2
            if strategy.name == CONCEPT_MAPPING.name and has_prerequisite_gaps:
                score += 0.8
            if strategy.name == ZPD_OPTIMIZED.name and in_productive_zone:
                score += 0.6 * zpd_data.confidence
            if strategy.name == PERFORMANCE_ADAPTIVE.name:
                score += 0.5

            if strategy.stress_responsive and stress > VERY_HIGH_STRESS:
                score += 0.3
            if strategy.time_aware and context.time_available_seconds < TIME_PRESSURE_SECONDS:
                score += 0.2
            if context.session_type == "test_prep" and strategy.name == MASTERY_FOCUSED.name:
                score += 0.2

            if self.store is not None:
                metrics = self.store.strategy_metrics(strategy.name)
                if metrics.total_recommendations >= MIN_HISTORY_SAMPLES:
                    score += 0.3 * metrics.average_accuracy

            scores[strategy.name] = score
        return scores

    def select(
        self,
        analysis: LearningAnalysis,
        zpd_data: ZPDData,
        priority_areas: list[PriorityArea],
        context: LearningContext,
        learner_id: Optional[str] = None,
    ) -> RecommendationStrategy:
        scores = self.score_strategies(analysis, zpd_data, priority_areas, context)

        best_name = DEFAULT_STRATEGY_NAME
        best_score = float("-inf")
        for name, score in scores.items():
            if score > best_score:
                best_name, best_score = name, score

        strategy = self.registry.get(best_name) or PERFORMANCE_ADAPTIVE
        logger.debug("Strategy scores: {}", scores)

        if learner_id and self.store is not None:
            personalized = self.store.personalized_weights(learner_id, strategy.name)
            if personalized is not None:
                strategy = replace(strategy, weights=personalized)
                logger.debug(f"Using personalized {strategy.name} weights for {learner_id}")

        logger.info(f"Selected strategy '{strategy.name}' (score={best_score:.2f})")
        return strategy
