"""
Adaptive Recommendation Engine.

Caller-facing orchestration of the recommendation pipeline:

    analyze state -> ZPD -> priority areas -> strategy -> candidates
        -> score/rank -> diversify -> enrich

Each call owns its intermediate records. Shared state (adaptation history,
personalized weights, fallback sets) lives in AdaptationStore and
FallbackCache. Store failures and deadline overruns never reach the caller;
the learner's last good set is served instead.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError

from src.recommender.adaptation import AdaptationStore, OutcomeAdapter
from src.recommender.analysis import SkillStateReader
from src.recommender.candidates import CandidateGenerator
from src.recommender.config import EngineConfig
from src.recommender.diversity import DiversityOptimizer
from src.recommender.enrichment import ReasoningEnricher
from src.recommender.exceptions import InvalidRequestError, RepositoryError
from src.recommender.fallback import FallbackCache
from src.recommender.models import (
    LearnerProfile,
    LearnerState,
    LearningContext,
    PersonalizedInsights,
    QuestionOutcome,
    QuestionRecommendation,
)
from src.recommender.priority import PriorityAreaIdentifier
from src.recommender.repositories import MasteryRepository, QuestionRepository
from src.recommender.scoring import CandidateScorer
from src.recommender.skill_graph import SkillGraph
from src.recommender.strategies import StrategyRegistry, StrategySelector
from src.recommender.zpd import ZPDCalculator


def _coerce(value: Any, model: type[BaseModel], name: str) -> Any:
    """Accept a model instance or a plain mapping; reject anything else."""
    if value is None:
        raise InvalidRequestError(f"{name} is required")
    if isinstance(value, model):
        return value
    if isinstance(value, dict):
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid {name}: {e}") from e
    raise InvalidRequestError(f"{name} must be a {model.__name__}, got {type(value).__name__}")


class AdaptiveRecommendationEngine:
    """Personalized question recommendations with outcome-driven adaptation."""

    def __init__(
        self,
        question_repository: QuestionRepository,
        mastery_repository: Optional[MasteryRepository] = None,
        config: Optional[EngineConfig] = None,
        skill_graph: Optional[SkillGraph] = None,
        registry: Optional[StrategyRegistry] = None,
        adaptation_store: Optional[AdaptationStore] = None,
        fallback_cache: Optional[FallbackCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or EngineConfig()
        self.question_repository = question_repository
        self.mastery_repository = mastery_repository
        self.skill_graph = skill_graph or SkillGraph()
        self.registry = registry or StrategyRegistry()
        self.store = adaptation_store or AdaptationStore(self.config)
        self.fallback = fallback_cache or FallbackCache(self.config.max_tracked_learners)

        self.state_reader = SkillStateReader(self.config)
        self.zpd_calculator = ZPDCalculator(self.config)
        self.priority_identifier = PriorityAreaIdentifier(self.skill_graph, self.config)
        self.strategy_selector = StrategySelector(self.registry, self.store)
        self.candidate_generator = CandidateGenerator(question_repository, self.config)
        self.scorer = CandidateScorer(
            question_repository,
            self.zpd_calculator,
            self.skill_graph,
            self.config,
            clock=clock,
        )
        self.diversity = DiversityOptimizer(self.config)
        self.enricher = ReasoningEnricher()
        self.adapter = OutcomeAdapter(self.store, self.registry, self.config, clock=clock)

        logger.debug(f"Recommendation engine ready with {len(self.registry)} strategies")

    async def generate_recommendations(
        self,
        learner_state: LearnerState,
        learning_context: LearningContext,
        learner_profile: LearnerProfile,
        count: int = 5,
        learner_id: Optional[str] = None,
    ) -> list[QuestionRecommendation]:
        """
        Generate up to `count` personalized recommendations.

        Raises:
            InvalidRequestError: count <= 0, a missing/malformed input, or a
                learner_id that differs from learner_state.learner_id.
                Store failures and timeouts are not raised; the learner's
                last good set (possibly empty) is returned instead.
        """
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidRequestError(f"count must be a positive integer, got {count!r}")
        learner_state = _coerce(learner_state, LearnerState, "learner_state")
        learning_context = _coerce(learning_context, LearningContext, "learning_context")
        learner_profile = _coerce(learner_profile, LearnerProfile, "learner_profile")
        if learner_id is not None and learner_id != learner_state.learner_id:
            raise InvalidRequestError(
                f"learner_id {learner_id!r} does not match learner_state.learner_id {learner_state.learner_id!r}"
            )
        learner_id = learner_state.learner_id

        start = time.perf_counter()
        try:
            recommendations = await asyncio.wait_for(
                self._run_pipeline(learner_state, learning_context, learner_profile, count, learner_id),
                timeout=self.config.timeout_seconds,
            )
        except RepositoryError as e:
            return self._serve_fallback(learner_id, count, e.dependency, str(e))
        except asyncio.TimeoutError:
            return self._serve_fallback(
                learner_id, count, "deadline", f"exceeded {self.config.timeout_seconds}s"
            )
        except InvalidRequestError:
            raise
        except Exception as e:
            logger.exception(f"Recommendation pipeline failed for {learner_id}")
            return self._serve_fallback(learner_id, count, "pipeline", f"{type(e).__name__}: {e}")

        if not recommendations:
            return self._serve_fallback(learner_id, count, "question_store", "no candidates found")

        self.fallback.store(learner_id, recommendations)
        self.store.record_served(learner_id, recommendations)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Generated {len(recommendations)} recommendations for {learner_id} in {elapsed_ms:.2f}ms")
        return recommendations

    async def _run_pipeline(
        self,
        learner_state: LearnerState,
        context: LearningContext,
        profile: LearnerProfile,
        count: int,
        learner_id: str,
    ) -> list[QuestionRecommendation]:
        state = await self.state_reader.hydrate(learner_state, self.mastery_repository, learner_id)
        analysis = self.state_reader.analyze(state, context)
        zpd_data = self.zpd_calculator.calculate_optimal_zone(state, profile)
        priority_areas = self.priority_identifier.identify(state, context, profile)
        strategy = self.strategy_selector.select(analysis, zpd_data, priority_areas, context, learner_id)

        candidates = await self.candidate_generator.generate(
            priority_areas, zpd_data, strategy, analysis, learner_id
        )
        ranked = await self.scorer.score_and_rank(
            candidates, state, context, profile, strategy, zpd_data, analysis, learner_id
        )
        selected = self.diversity.optimize(ranked, count, strategy)
        return self.enricher.enrich(selected, ranked, state, strategy, zpd_data)

    def _serve_fallback(
        self, learner_id: str, count: int, dependency: str, detail: str
    ) -> list[QuestionRecommendation]:
        cached = self.fallback.get(learner_id, count)
        logger.warning(
            f"Recommendation fallback for {learner_id}: {dependency} failed ({detail}); "
            f"serving {len(cached)} cached recommendations"
        )
        return cached

    def adapt_from_outcome(
        self,
        recommendation: QuestionRecommendation,
        actual_outcome: QuestionOutcome,
        learner_state: LearnerState,
    ) -> None:
        self.adapter.adapt_from_outcome(recommendation, actual_outcome, learner_state)

    def get_personalized_insights(self, learner_id: str) -> PersonalizedInsights:
        return self.adapter.get_personalized_insights(learner_id)
