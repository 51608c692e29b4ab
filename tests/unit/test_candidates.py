"""
Unit tests for candidate generation: tiers, relevance, widening cascade.
"""

import pytest

from src.recommender.candidates import (
    CandidateGenerator,
    calculate_relevance,
    difficulty_tiers_for,
    to_candidate,
)
from src.recommender.config import EngineConfig
from src.recommender.models import (
    LearningAnalysis,
    PriorityArea,
    PriorityType,
    Question,
    SkillMastery,
    Urgency,
    ZPDData,
)
from src.recommender.repositories import InMemoryQuestionRepository
from src.recommender.strategies import MASTERY_FOCUSED


def _zone(optimal: float) -> ZPDData:
    return ZPDData(lower_bound=optimal - 0.15, upper_bound=optimal + 0.15, optimal=optimal, confidence=0.5)


def _areas(*identifiers: str) -> list[PriorityArea]:
    return [
        PriorityArea(
            type=PriorityType.SKILL,
            identifier=identifier,
            priority=1.0 - i * 0.1,
            reasons=["knowledge_gap"],
            urgency=Urgency.HIGH,
        )
        for i, identifier in enumerate(identifiers)
    ]


@pytest.fixture
def low_algebra_analysis():
    return LearningAnalysis(
        average_mastery=0.3,
        skills={"algebra_linear": SkillMastery(skill_id="algebra_linear", mastery_probability=0.3)},
    )


class TestDifficultyTiers:
    @pytest.mark.parametrize(
        "optimal, tiers",
        [
            (0.2, ["easy"]),
            (0.4, ["easy"]),
            (0.5, ["easy", "medium"]),
            (0.7, ["easy", "medium"]),
            (0.85, ["medium", "hard"]),
        ],
    )
    def test_tiers_follow_optimal(self, optimal, tiers):
        assert difficulty_tiers_for(optimal) == tiers


class TestRelevance:
    def test_primary_skill_with_low_mastery(self, low_algebra_analysis):
        question = Question(id="q1", primary_skill="algebra_linear")
        # primary 0.4 + low mastery 0.2 + unused question 0.1
        assert calculate_relevance(question, "algebra_linear", low_algebra_analysis) == pytest.approx(0.7)

    def test_moderate_success_rate_bonus(self, low_algebra_analysis):
        question = Question(id="q1", primary_skill="algebra_linear", success_rate=0.7)
        assert calculate_relevance(question, "algebra_linear", low_algebra_analysis) == pytest.approx(0.8)

    def test_secondary_skill_match(self, low_algebra_analysis):
        question = Question(id="q2", primary_skill="algebra_quadratic", secondary_skills=("algebra_linear",))
        assert calculate_relevance(question, "algebra_linear", low_algebra_analysis) == pytest.approx(0.3)

    def test_recent_failures_add_relevance(self, low_algebra_analysis):
        low_algebra_analysis.skill_success_rates = {"algebra_linear": 0.25}
        question = Question(id="q1", primary_skill="algebra_linear")
        assert calculate_relevance(question, "algebra_linear", low_algebra_analysis) == pytest.approx(0.8)

    def test_heavily_used_question_gets_no_usage_bonus(self):
        analysis = LearningAnalysis(average_mastery=0.5)
        question = Question(id="q1", primary_skill="reading_inference", times_used=50)
        assert calculate_relevance(question, "reading_inference", analysis) == pytest.approx(0.4)

    def test_bounded(self, low_algebra_analysis):
        low_algebra_analysis.skill_success_rates = {"algebra_linear": 0.0}
        question = Question(
            id="q1", primary_skill="algebra_linear", secondary_skills=("algebra_linear",), success_rate=0.7
        )
        assert calculate_relevance(question, "algebra_linear", low_algebra_analysis) == 1.0


class TestGenerate:
    @pytest.mark.asyncio
    async def test_one_fetch_per_skill_and_tier(self, question_repository, low_algebra_analysis):
        generator = CandidateGenerator(question_repository)
        pool = await generator.generate(_areas("algebra_linear"), _zone(0.5), MASTERY_FOCUSED, low_algebra_analysis)

        assert [(c["skills"], c["difficulty"]) for c in question_repository.calls] == [
            (["algebra_linear"], "easy"),
            (["algebra_linear"], "medium"),
        ]
        assert {c.question_id for c in pool} == {"alg-e1", "alg-e2", "alg-m1"}

    @pytest.mark.asyncio
    async def test_pool_sorted_by_relevance_then_id(self, question_repository, low_algebra_analysis):
        generator = CandidateGenerator(question_repository)
        pool = await generator.generate(
            _areas("algebra_linear", "reading_inference"), _zone(0.5), MASTERY_FOCUSED, low_algebra_analysis
        )
        keys = [(-c.relevance_score, c.question_id) for c in pool]
        assert keys == sorted(keys)
        assert pool[0].question_id.startswith("alg-")

    def test_duplicates_keep_best_relevance(self):
        quad = Question(id="quad-1", primary_skill="algebra_quadratic", secondary_skills=("algebra_linear",))
        alg = Question(id="alg-1", primary_skill="algebra_linear")
        generator = CandidateGenerator(InMemoryQuestionRepository())
        pool = generator._dedupe_and_rank(
            [to_candidate(quad, 0.3), to_candidate(alg, 0.3), to_candidate(quad, 0.5)]
        )
        assert [(c.question_id, c.relevance_score) for c in pool] == [("quad-1", 0.5), ("alg-1", 0.3)]

    @pytest.mark.asyncio
    async def test_pool_capped(self, question_repository, low_algebra_analysis):
        generator = CandidateGenerator(question_repository, EngineConfig(max_candidates=2))
        pool = await generator.generate(
            _areas("algebra_linear", "reading_inference"), _zone(0.5), MASTERY_FOCUSED, low_algebra_analysis
        )
        assert len(pool) == 2

    def test_priority_identifiers_distinct_and_capped(self):
        generator = CandidateGenerator(InMemoryQuestionRepository(), EngineConfig(max_priority_skills=2))
        areas = _areas("a", "a", "b", "c")
        assert generator.priority_identifiers(areas) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_no_priority_areas_uses_default_skills(self, question_repository):
        generator = CandidateGenerator(question_repository)
        pool = await generator.generate([], _zone(0.3), MASTERY_FOCUSED, LearningAnalysis(average_mastery=0.5))

        fetched = [c["skills"][0] for c in question_repository.calls]
        assert fetched == ["algebra_linear", "reading_inference", "writing_grammar"]
        assert {c.question_id for c in pool} == {"alg-e1", "alg-e2", "read-e1", "gram-e1"}


class TestWideningCascade:
    @pytest.mark.asyncio
    async def test_widens_to_all_tiers(self):
        repository = InMemoryQuestionRepository([Question(id="geo-h1", primary_skill="geometry_basic", difficulty="hard")])
        generator = CandidateGenerator(repository)
        pool = await generator.generate(
            _areas("geometry_basic"), _zone(0.3), MASTERY_FOCUSED, LearningAnalysis(average_mastery=0.5)
        )
        assert [c.question_id for c in pool] == ["geo-h1"]
        assert [c["difficulty"] for c in repository.calls] == ["easy", "easy", "medium", "hard"]

    @pytest.mark.asyncio
    async def test_falls_back_to_default_skills(self, question_repository):
        generator = CandidateGenerator(question_repository)
        pool = await generator.generate(
            _areas("geometry_basic"), _zone(0.5), MASTERY_FOCUSED, LearningAnalysis(average_mastery=0.5)
        )
        assert pool
        assert {c.skills[0] for c in pool} <= {"algebra_linear", "reading_inference", "writing_grammar"}

    @pytest.mark.asyncio
    async def test_last_resort_fetches_any_question(self):
        repository = InMemoryQuestionRepository([Question(id="phys-1", primary_skill="physics_motion")])
        generator = CandidateGenerator(repository)
        pool = await generator.generate(
            _areas("geometry_basic"), _zone(0.5), MASTERY_FOCUSED, LearningAnalysis(average_mastery=0.5)
        )
        assert [c.question_id for c in pool] == ["phys-1"]
        assert repository.calls[-1] == {"subject": None, "difficulty": None, "skills": [], "limit": 20}

    @pytest.mark.asyncio
    async def test_empty_store_yields_empty_pool(self):
        generator = CandidateGenerator(InMemoryQuestionRepository())
        pool = await generator.generate(
            _areas("geometry_basic"), _zone(0.5), MASTERY_FOCUSED, LearningAnalysis(average_mastery=0.5)
        )
        assert pool == []
