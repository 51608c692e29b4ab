"""
Integration tests for the SQLAlchemy repositories.

Runs against an in-memory SQLite database so no PostgreSQL server is needed.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.db.database import init_db, make_session_factory, session_scope
from src.db.models import QuestionAttemptRow, QuestionRow, SkillMasteryRow
from src.db.repositories import SqlMasteryRepository, SqlQuestionRepository
from src.recommender import AdaptiveRecommendationEngine, LearnerState, LearningContext, LearnerProfile
from src.recommender.exceptions import MasteryStoreError, QuestionStoreError


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    factory = make_session_factory(engine)

    base_time = datetime(2024, 1, 1, 9, 0)
    with session_scope(factory) as session:
        session.add_all(
            [
                QuestionRow(
                    id="alg-e1",
                    primary_skill="algebra_linear",
                    difficulty="easy",
                    concepts=["slope"],
                    times_used=3,
                    created_at=base_time,
                ),
                QuestionRow(
                    id="alg-e2",
                    primary_skill="algebra_linear",
                    difficulty="easy",
                    concepts=["intercept"],
                    times_used=0,
                    created_at=base_time,
                ),
                QuestionRow(
                    id="alg-m1",
                    primary_skill="algebra_linear",
                    difficulty="medium",
                    secondary_skills=["arithmetic"],
                    prerequisites=["arithmetic"],
                    success_rate=0.65,
                    created_at=base_time,
                ),
                QuestionRow(
                    id="read-e1",
                    subject="reading",
                    primary_skill="reading_inference",
                    difficulty="easy",
                    created_at=base_time,
                ),
            ]
        )
        session.add_all(
            [
                SkillMasteryRow(
                    user_id="learner-sql",
                    skill_id="algebra_linear",
                    mastery_probability=0.25,
                    total_attempts=12,
                    correct_attempts=3,
                ),
                SkillMasteryRow(
                    user_id="learner-other",
                    skill_id="algebra_linear",
                    mastery_probability=0.9,
                ),
            ]
        )
        session.flush()
        session.add_all(
            [
                QuestionAttemptRow(
                    user_id="learner-sql",
                    question_id="alg-e1",
                    is_correct=False,
                    response_time_seconds=100.0,
                    answered_at=base_time,
                ),
                QuestionAttemptRow(
                    user_id="learner-sql",
                    question_id="alg-e1",
                    is_correct=True,
                    response_time_seconds=60.0,
                    answered_at=base_time + timedelta(days=1),
                ),
            ]
        )
    return factory


class TestSqlQuestionRepository:
    @pytest.mark.asyncio
    async def test_filters_and_least_used_first(self, session_factory):
        repo = SqlQuestionRepository(session_factory)
        questions = await repo.fetch_questions(skills=["algebra_linear"], difficulty="easy")
        assert [q.id for q in questions] == ["alg-e2", "alg-e1"]

    @pytest.mark.asyncio
    async def test_subject_limit_and_exclusion(self, session_factory):
        repo = SqlQuestionRepository(session_factory)
        assert [q.id for q in await repo.fetch_questions(subject="reading")] == ["read-e1"]
        assert len(await repo.fetch_questions(limit=2)) == 2
        excluded = await repo.fetch_questions(skills=["algebra_linear"], exclude_ids=["alg-e2", "alg-m1"])
        assert [q.id for q in excluded] == ["alg-e1"]

    @pytest.mark.asyncio
    async def test_row_mapping(self, session_factory):
        repo = SqlQuestionRepository(session_factory)
        (question,) = await repo.fetch_questions_by_ids(["alg-m1"])
        assert question.secondary_skills == ("arithmetic",)
        assert question.prerequisites == ("arithmetic",)
        assert question.success_rate == pytest.approx(0.65)
        assert question.difficulty_value == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_fetch_by_ids_keeps_request_order(self, session_factory):
        repo = SqlQuestionRepository(session_factory)
        questions = await repo.fetch_questions_by_ids(["read-e1", "missing", "alg-e1"])
        assert [q.id for q in questions] == ["read-e1", "alg-e1"]
        assert await repo.fetch_questions_by_ids([]) == []

    @pytest.mark.asyncio
    async def test_user_question_analytics(self, session_factory):
        repo = SqlQuestionRepository(session_factory)
        analytics = await repo.fetch_user_question_analytics("learner-sql", ["alg-e1", "alg-e2"])

        assert set(analytics) == {"alg-e1"}
        stats = analytics["alg-e1"]
        assert stats.attempts == 2
        assert stats.last_correct is True
        assert stats.average_time == 80
        assert stats.last_attempted == datetime(2024, 1, 2, 9, 0)

    @pytest.mark.asyncio
    async def test_database_errors_wrapped(self):
        engine = create_engine(
            "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        repo = SqlQuestionRepository(make_session_factory(engine))  # tables never created
        with pytest.raises(QuestionStoreError):
            await repo.fetch_questions(skills=["algebra_linear"])


class TestSqlMasteryRepository:
    @pytest.mark.asyncio
    async def test_fetch_for_user(self, session_factory):
        mastery = await SqlMasteryRepository(session_factory).fetch_skill_mastery("learner-sql")
        assert set(mastery) == {"algebra_linear"}
        assert mastery["algebra_linear"].mastery_probability == pytest.approx(0.25)
        assert mastery["algebra_linear"].success_rate == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_factory):
        assert await SqlMasteryRepository(session_factory).fetch_skill_mastery("nobody") == {}

    @pytest.mark.asyncio
    async def test_database_errors_wrapped(self):
        engine = create_engine(
            "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        with pytest.raises(MasteryStoreError):
            await SqlMasteryRepository(make_session_factory(engine)).fetch_skill_mastery("learner-sql")

    @pytest.mark.asyncio
    async def test_invalid_row_wrapped(self, session_factory):
        with session_scope(session_factory) as session:
            session.add(
                SkillMasteryRow(
                    user_id="learner-bad",
                    skill_id="algebra_linear",
                    mastery_probability=0.5,
                    total_attempts=1,
                    correct_attempts=3,
                )
            )
        with pytest.raises(MasteryStoreError):
            await SqlMasteryRepository(session_factory).fetch_skill_mastery("learner-bad")


class TestEngineOverSql:
    @pytest.mark.asyncio
    async def test_recommends_from_database(self, session_factory):
        engine = AdaptiveRecommendationEngine(
            SqlQuestionRepository(session_factory),
            mastery_repository=SqlMasteryRepository(session_factory),
        )
        recs = await engine.generate_recommendations(
            LearnerState(learner_id="learner-sql"), LearningContext(stress_level=0.2), LearnerProfile(), count=3
        )

        assert recs
        assert all(r.primary_skill == "algebra_linear" for r in recs)
        # alg-e1 was answered by this learner, so the fresh easy question leads
        assert recs[0].question_id == "alg-e2"
