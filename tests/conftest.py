"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.recommender import (  # noqa: E402
    AdaptiveRecommendationEngine,
    EngineConfig,
    InMemoryQuestionRepository,
    LearnerProfile,
    LearnerState,
    LearningContext,
    PerformanceRecord,
    Question,
    SkillMastery,
)

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite, mock HTTP, CLI runner)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fixed_clock():
    """Clock returning a constant instant."""
    return lambda: FIXED_NOW


@pytest.fixture
def config():
    """Engine config with a generous deadline for slow CI machines."""
    return EngineConfig(timeout_seconds=5.0)


def _history(skill_id: str, pattern: str, start: datetime = FIXED_NOW) -> list[PerformanceRecord]:
    return [
        PerformanceRecord(
            skill_id=skill_id,
            correct=mark == "C",
            timestamp=start - timedelta(minutes=len(pattern) - i),
            response_time_seconds=75.0,
        )
        for i, mark in enumerate(pattern)
    ]


@pytest.fixture
def algebra_learner():
    """Learner weak in linear algebra with a run of recent mistakes."""
    return LearnerState(
        learner_id="learner-algebra",
        skills={
            "algebra_linear": SkillMastery(
                skill_id="algebra_linear", mastery_probability=0.3, total_attempts=20, correct_attempts=6
            ),
            "reading_inference": SkillMastery(
                skill_id="reading_inference", mastery_probability=0.85, total_attempts=30, correct_attempts=26
            ),
        },
        performance_history=_history("algebra_linear", "XXCXC"),
        stress_level=0.2,
        engagement_level=0.7,
    )


@pytest.fixture
def new_learner():
    """Learner with no skills and no history."""
    return LearnerState(learner_id="learner-new")


@pytest.fixture
def practice_context():
    return LearningContext(session_type="practice", time_available_seconds=1800, stress_level=0.2)


@pytest.fixture
def algebra_context():
    return LearningContext(
        session_type="practice",
        time_available_seconds=1800,
        current_goals=["algebra"],
        stress_level=0.2,
    )


@pytest.fixture
def profile():
    return LearnerProfile(learning_style="analytical", preferred_pace="moderate")


@pytest.fixture
def question_bank():
    """Small mixed question bank."""
    return [
        Question(id="alg-e1", primary_skill="algebra_linear", difficulty="easy", concepts=("slope",)),
        Question(id="alg-e2", primary_skill="algebra_linear", difficulty="easy", concepts=("intercept",)),
        Question(
            id="alg-m1",
            primary_skill="algebra_linear",
            difficulty="medium",
            concepts=("systems",),
            question_type="free_response",
        ),
        Question(id="alg-h1", primary_skill="algebra_linear", difficulty="hard", concepts=("systems",)),
        Question(
            id="quad-m1",
            primary_skill="algebra_quadratic",
            difficulty="medium",
            secondary_skills=("algebra_linear",),
            concepts=("factoring",),
        ),
        Question(id="read-e1", primary_skill="reading_inference", difficulty="easy", concepts=("main_idea",)),
        Question(id="read-m1", primary_skill="reading_inference", difficulty="medium", concepts=("tone",)),
        Question(id="read-h1", primary_skill="reading_inference", difficulty="hard", concepts=("evidence",)),
        Question(id="gram-e1", primary_skill="writing_grammar", difficulty="easy", concepts=("commas",)),
        Question(id="gram-m1", primary_skill="writing_grammar", difficulty="medium", concepts=("agreement",)),
    ]


@pytest.fixture
def question_repository(question_bank):
    return InMemoryQuestionRepository(question_bank)


@pytest.fixture
def engine(question_repository, config, fixed_clock):
    return AdaptiveRecommendationEngine(question_repository, config=config, clock=fixed_clock)


@pytest.fixture
def history_factory():
    """Build a history from a string like 'CCXC' (C = correct, X = wrong), oldest first."""
    return _history


@pytest.fixture
def recommendation_factory():
    """Build a scored recommendation without running the pipeline."""
    from src.recommender.models import (
        AdaptiveMetrics,
        ExpectedOutcome,
        FactorType,
        PrimaryFactor,
        QuestionRecommendation,
        ReasoningFactor,
        RecommendationReasoning,
    )

    def make(
        question_id: str,
        priority: float = 0.5,
        skills=("algebra_linear",),
        concepts=("slope",),
        difficulty: float = 0.3,
        zpd_alignment: float = 0.9,
        strategy: str = "performance_adaptive",
        estimated_time_seconds: int = 90,
        success_probability: float = 0.6,
    ) -> QuestionRecommendation:
        skills = list(skills)
        tier = {0.3: "easy", 0.6: "medium", 0.9: "hard"}.get(difficulty, "medium")
        return QuestionRecommendation(
            question_id=question_id,
            question=Question(
                id=question_id,
                primary_skill=skills[0] if skills else "unknown",
                difficulty=tier,
                secondary_skills=tuple(skills[1:]),
                concepts=tuple(concepts),
                estimated_time_seconds=estimated_time_seconds,
            ),
            skills=skills,
            concepts=list(concepts),
            difficulty=difficulty,
            estimated_time_seconds=estimated_time_seconds,
            relevance_score=0.5,
            priority=priority,
            reasoning=RecommendationReasoning(
                primary_factor=PrimaryFactor.SKILL_GAP,
                factors=[
                    ReasoningFactor(FactorType.MASTERY_LEVEL, 0.3, 0.7, "skill gap addressed"),
                    ReasoningFactor(FactorType.RECENT_PERFORMANCE, 0.25, 0.9, "difficulty fit"),
                    ReasoningFactor(FactorType.ENGAGEMENT, 0.15, 0.5, "profile engagement fit"),
                    ReasoningFactor(FactorType.TIME_PRESSURE, 0.15, 1.0, "fits the session time budget"),
                    ReasoningFactor(FactorType.PREREQUISITE, 0.05, 1.0, "prerequisites in place"),
                    ReasoningFactor(FactorType.STRESS_LEVEL, 0.1, 1.0, "stress fit"),
                ],
                confidence=0.6,
                adaptive_strategy=strategy,
                zpd_alignment=zpd_alignment,
            ),
            adaptive_metrics=AdaptiveMetrics(),
            expected_outcome=ExpectedOutcome(
                mastery_improvement={s: 0.02 for s in skills},
                success_probability=success_probability,
                time_to_complete=float(estimated_time_seconds),
            ),
        )

    return make
