"""
Unit tests for the recommendation engine end to end over in-memory stores.
"""

import asyncio

import pytest

from src.recommender import (
    AdaptiveRecommendationEngine,
    EngineConfig,
    InMemoryMasteryRepository,
    InMemoryQuestionRepository,
    InvalidRequestError,
    LearnerState,
    LearningContext,
    QuestionOutcome,
    SkillMastery,
)
from src.recommender.models import FactorType
from src.recommender.strategies import STRESS_ADAPTIVE


class SlowQuestionRepository(InMemoryQuestionRepository):
    """Question store that never answers within the deadline."""

    async def fetch_questions(self, **kwargs):
        await asyncio.sleep(1.0)
        return await super().fetch_questions(**kwargs)


class FlakyQuestionRepository(InMemoryQuestionRepository):
    """Question store whose driver raises raw socket errors once broken."""

    broken = False

    async def fetch_questions(self, **kwargs):
        if self.broken:
            raise ConnectionError("socket reset")
        return await super().fetch_questions(**kwargs)


@pytest.fixture
def reading_learner():
    return LearnerState(
        learner_id="learner-reading",
        skills={
            "reading_inference": SkillMastery(
                skill_id="reading_inference", mastery_probability=0.4, total_attempts=10, correct_attempts=4
            ),
        },
    )


class TestGenerateRecommendations:
    @pytest.mark.asyncio
    async def test_low_algebra_mastery(self, engine, algebra_learner, algebra_context, profile):
        recs = await engine.generate_recommendations(algebra_learner, algebra_context, profile, count=5)

        assert [r.question_id for r in recs] == ["alg-e1", "alg-e2", "alg-m1"]
        assert all(r.primary_skill == "algebra_linear" for r in recs)
        assert all(r.strategy_name == "mastery_focused" for r in recs)
        assert recs[0].priority > 0.5
        assert recs[0].reasoning.summary
        assert recs[0].reasoning.zpd_summary

    @pytest.mark.asyncio
    async def test_reading_goal(self, engine, reading_learner, profile):
        context = LearningContext(current_goals=["reading"], stress_level=0.2)
        recs = await engine.generate_recommendations(reading_learner, context, profile, count=3)

        assert recs
        assert {r.primary_skill for r in recs} == {"reading_inference"}
        assert len(recs) <= 3

    @pytest.mark.asyncio
    async def test_count_limits_result(self, engine, algebra_learner, algebra_context, profile):
        recs = await engine.generate_recommendations(algebra_learner, algebra_context, profile, count=2)
        assert [r.question_id for r in recs] == ["alg-e1", "alg-e2"]

    @pytest.mark.asyncio
    async def test_cold_start_uses_default_skills(self, engine, new_learner, practice_context, profile):
        recs = await engine.generate_recommendations(new_learner, practice_context, profile, count=5)

        assert len(recs) == 5
        assert len({r.question_id for r in recs}) == 5
        assert {r.primary_skill for r in recs} <= {"algebra_linear", "reading_inference", "writing_grammar"}

    @pytest.mark.asyncio
    async def test_deterministic_across_engines(
        self, question_bank, config, fixed_clock, algebra_learner, algebra_context, profile
    ):
        results = []
        for _ in range(2):
            engine = AdaptiveRecommendationEngine(
                InMemoryQuestionRepository(question_bank), config=config, clock=fixed_clock
            )
            recs = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
            results.append([(r.question_id, r.priority) for r in recs])
        assert results[0] == results[1]

    @pytest.mark.asyncio
    async def test_repeat_call_same_engine_is_stable(self, engine, algebra_learner, algebra_context, profile):
        first = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        second = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        assert [r.question_id for r in first] == [r.question_id for r in second]

    @pytest.mark.asyncio
    async def test_accepts_plain_dicts(self, engine):
        recs = await engine.generate_recommendations(
            {"learner_id": "learner-dict"}, {"time_available_seconds": 600}, {}, count=1
        )
        assert len(recs) == 1

    @pytest.mark.asyncio
    async def test_snapshot_not_mutated(self, engine, algebra_learner, algebra_context, profile):
        before = algebra_learner.model_dump()
        await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        assert algebra_learner.model_dump() == before


class TestInvalidRequests:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, -1, True, 2.5])
    async def test_bad_count(self, engine, algebra_learner, practice_context, profile, count):
        with pytest.raises(InvalidRequestError):
            await engine.generate_recommendations(algebra_learner, practice_context, profile, count=count)

    @pytest.mark.asyncio
    async def test_missing_learner_state(self, engine, practice_context, profile):
        with pytest.raises(InvalidRequestError):
            await engine.generate_recommendations(None, practice_context, profile)

    @pytest.mark.asyncio
    async def test_malformed_context(self, engine, algebra_learner, profile):
        with pytest.raises(InvalidRequestError):
            await engine.generate_recommendations(algebra_learner, {"stress_level": 4.0}, profile)


class TestFallback:
    @pytest.mark.asyncio
    async def test_empty_store_returns_empty(self, config, algebra_learner, algebra_context, profile):
        engine = AdaptiveRecommendationEngine(InMemoryQuestionRepository(), config=config)
        assert await engine.generate_recommendations(algebra_learner, algebra_context, profile) == []

    @pytest.mark.asyncio
    async def test_store_outage_serves_last_good_set(
        self, engine, question_repository, algebra_learner, algebra_context, profile
    ):
        good = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        question_repository.fail_with = "connection refused"

        degraded = await engine.generate_recommendations(algebra_learner, algebra_context, profile, count=2)
        assert [r.question_id for r in degraded] == [r.question_id for r in good[:2]]

    @pytest.mark.asyncio
    async def test_mastery_store_outage_falls_back(self, question_repository, config, algebra_learner, algebra_context, profile):
        mastery = InMemoryMasteryRepository()
        mastery.fail_with = "timeout"
        engine = AdaptiveRecommendationEngine(question_repository, mastery_repository=mastery, config=config)
        assert await engine.generate_recommendations(algebra_learner, algebra_context, profile) == []

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, question_bank, algebra_learner, algebra_context, profile):
        engine = AdaptiveRecommendationEngine(
            SlowQuestionRepository(question_bank), config=EngineConfig(timeout_seconds=0.05)
        )
        assert await engine.generate_recommendations(algebra_learner, algebra_context, profile) == []


class TestMasteryHydration:
    @pytest.mark.asyncio
    async def test_missing_skills_filled_from_store(self, question_repository, config, practice_context, profile):
        mastery = InMemoryMasteryRepository(
            {
                "learner-hydrate": {
                    "algebra_linear": SkillMastery(skill_id="algebra_linear", mastery_probability=0.2),
                    "reading_inference": SkillMastery(skill_id="reading_inference", mastery_probability=0.1),
                }
            }
        )
        engine = AdaptiveRecommendationEngine(question_repository, mastery_repository=mastery, config=config)
        state = LearnerState(
            learner_id="learner-hydrate",
            skills={"reading_inference": SkillMastery(skill_id="reading_inference", mastery_probability=0.95)},
        )

        recs = await engine.generate_recommendations(state, practice_context, profile, count=3)

        # Stored algebra mastery is used; the snapshot's reading mastery wins over the store
        assert {r.primary_skill for r in recs} == {"algebra_linear"}


class TestAdaptation:
    @pytest.mark.asyncio
    async def test_outcome_personalizes_next_call(self, engine, algebra_learner, algebra_context, profile):
        recs = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        engine.adapt_from_outcome(recs[0], QuestionOutcome(correct=True, time_spent_seconds=80), algebra_learner)

        insights = engine.get_personalized_insights(algebra_learner.learner_id)
        assert insights.total_recommendations == 1
        assert insights.best_strategies == ["mastery_focused"]
        personalized = insights.personalized_weights["mastery_focused"]
        assert personalized.total == pytest.approx(1.0)

        again = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        mastery_factor = again[0].reasoning.factors[0]
        assert mastery_factor.weight == pytest.approx(personalized.mastery_priority)

    @pytest.mark.asyncio
    async def test_outcome_for_other_learner_ignored(self, engine, algebra_learner, algebra_context, profile):
        recs = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        stranger = LearnerState(learner_id="learner-stranger")
        engine.adapt_from_outcome(recs[0], QuestionOutcome(correct=True), stranger)

        assert engine.get_personalized_insights("learner-stranger").total_recommendations == 0

    @pytest.mark.asyncio
    async def test_strategy_switch_uses_its_own_weights(self, engine, algebra_learner, algebra_context, profile):
        recs = await engine.generate_recommendations(algebra_learner, algebra_context, profile)
        assert recs[0].strategy_name == "mastery_focused"
        engine.adapt_from_outcome(recs[0], QuestionOutcome(correct=True, time_spent_seconds=80), algebra_learner)

        stressed = algebra_context.model_copy(update={"stress_level": 0.9})
        switched = await engine.generate_recommendations(algebra_learner, stressed, profile)

        assert switched[0].strategy_name == "stress_adaptive"
        weights = {f.type: f.weight for f in switched[0].reasoning.factors}
        assert weights[FactorType.MASTERY_LEVEL] == pytest.approx(STRESS_ADAPTIVE.weights.mastery_priority)
        assert weights[FactorType.ENGAGEMENT] == pytest.approx(STRESS_ADAPTIVE.weights.engagement_factor)
        assert set(engine.get_personalized_insights(algebra_learner.learner_id).personalized_weights) == {
            "mastery_focused"
        }


class TestUnexpectedFailures:
    @pytest.mark.asyncio
    async def test_plain_io_error_serves_last_good_set(
        self, question_bank, config, algebra_learner, algebra_context, profile
    ):
        repository = FlakyQuestionRepository(question_bank)
        engine = AdaptiveRecommendationEngine(repository, config=config)
        good = await engine.generate_recommendations(algebra_learner, algebra_context, profile)

        repository.broken = True
        degraded = await engine.generate_recommendations(algebra_learner, algebra_context, profile)

        assert [r.question_id for r in degraded] == [r.question_id for r in good]

    @pytest.mark.asyncio
    async def test_plain_io_error_without_history_returns_empty(
        self, question_bank, config, algebra_learner, algebra_context, profile
    ):
        repository = FlakyQuestionRepository(question_bank)
        repository.broken = True
        engine = AdaptiveRecommendationEngine(repository, config=config)
        assert await engine.generate_recommendations(algebra_learner, algebra_context, profile) == []

    @pytest.mark.asyncio
    async def test_mismatched_learner_id_rejected(self, engine, algebra_learner, algebra_context, profile):
        with pytest.raises(InvalidRequestError):
            await engine.generate_recommendations(
                algebra_learner, algebra_context, profile, learner_id="someone-else"
            )

    @pytest.mark.asyncio
    async def test_matching_learner_id_accepted(self, engine, algebra_learner, algebra_context, profile):
        recs = await engine.generate_recommendations(
            algebra_learner, algebra_context, profile, learner_id=algebra_learner.learner_id
        )
        assert recs
