"""
SQLAlchemy implementations of the recommender repositories.

Queries run synchronously inside asyncio.to_thread so the engine's event
loop is never blocked. Any SQLAlchemyError is wrapped in the matching
RepositoryError subclass, which the engine turns into a fallback.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.db.database import session_scope
from src.db.models import QuestionAttemptRow, QuestionRow, SkillMasteryRow
from src.recommender.exceptions import MasteryStoreError, QuestionStoreError
from src.recommender.models import Question, SkillMastery, UserQuestionAnalytics


def row_to_question(row: QuestionRow) -> Question:
    return Question(
        id=row.id,
        primary_skill=row.primary_skill,
        difficulty=row.difficulty,
        subject=row.subject,
        question_type=row.question_type,
        secondary_skills=tuple(row.secondary_skills or ()),
        concepts=tuple(row.concepts or ()),
        prerequisites=tuple(row.prerequisites or ()),
        estimated_time_seconds=row.estimated_time_seconds or 90,
        times_used=row.times_used or 0,
        success_rate=row.success_rate,
        average_response_time=row.average_response_time,
        question_text=row.question_text or "",
    )


class SqlQuestionRepository:
    """Question store backed by the `questions` and `question_attempts` tables."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    async def fetch_questions(
        self,
        *,
        subject: Optional[str] = None,
        difficulty: Optional[str] = None,
        skills: Optional[Sequence[str]] = None,
        limit: int = 50,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> list[Question]:
        return await asyncio.to_thread(
            self._fetch_questions, subject, difficulty, list(skills or ()), limit, list(exclude_ids or ())
        )

    def _fetch_questions(
        self,
        subject: Optional[str],
        difficulty: Optional[str],
        skills: list[str],
        limit: int,
        exclude_ids: list[str],
    ) -> list[Question]:
        stmt = select(QuestionRow)
        if subject:
            stmt = stmt.where(QuestionRow.subject == subject)
        if difficulty:
            stmt = stmt.where(QuestionRow.difficulty == difficulty)
        if skills:
            stmt = stmt.where(QuestionRow.primary_skill.in_(skills))
        if exclude_ids:
            stmt = stmt.where(QuestionRow.id.not_in(exclude_ids))
        # Prefer less-used questions
        stmt = stmt.order_by(
            QuestionRow.times_used.asc(), QuestionRow.created_at.desc(), QuestionRow.id.asc()
        ).limit(limit)

        try:
            with session_scope(self._session_factory) as session:
                return [row_to_question(row) for row in session.scalars(stmt).all()]
        except SQLAlchemyError as e:
            logger.warning(f"Question query failed: {e}")
            raise QuestionStoreError(f"Failed to fetch questions: {e}") from e

    async def fetch_questions_by_ids(self, ids: Sequence[str]) -> list[Question]:
        if not ids:
            return []
        return await asyncio.to_thread(self._fetch_by_ids, list(ids))

    def _fetch_by_ids(self, ids: list[str]) -> list[Question]:
        stmt = select(QuestionRow).where(QuestionRow.id.in_(ids))
        try:
            with session_scope(self._session_factory) as session:
                rows = {row.id: row_to_question(row) for row in session.scalars(stmt).all()}
        except SQLAlchemyError as e:
            raise QuestionStoreError(f"Failed to fetch questions by id: {e}") from e
        return [rows[i] for i in ids if i in rows]

    async def fetch_user_question_analytics(
        self, user_id: str, question_ids: Sequence[str]
    ) -> dict[str, UserQuestionAnalytics]:
        if not question_ids:
            return {}
        return await asyncio.to_thread(self._fetch_analytics, user_id, list(question_ids))

    def _fetch_analytics(self, user_id: str, question_ids: list[str]) -> dict[str, UserQuestionAnalytics]:
        stmt = (
            select(QuestionAttemptRow)
            .where(QuestionAttemptRow.user_id == user_id)
            .where(QuestionAttemptRow.question_id.in_(question_ids))
            .order_by(QuestionAttemptRow.answered_at.desc())
        )
        try:
            with session_scope(self._session_factory) as session:
                attempts = [
                    (a.question_id, a.is_correct, a.response_time_seconds, a.answered_at)
                    for a in session.scalars(stmt).all()
                ]
        except SQLAlchemyError as e:
            raise QuestionStoreError(f"Failed to fetch question analytics: {e}") from e

        grouped: dict[str, list[tuple]] = {}
        for attempt in attempts:
            grouped.setdefault(attempt[0], []).append(attempt)

        analytics = {}
        for question_id, rows in grouped.items():
            latest = rows[0]  # ordered newest first
            analytics[question_id] = UserQuestionAnalytics(
                attempts=len(rows),
                last_correct=latest[1],
                average_time=round(sum(r[2] for r in rows) / len(rows)),
                last_attempted=latest[3],
            )
        return analytics


class SqlMasteryRepository:
    """Mastery store backed by the `skill_mastery` table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    async def fetch_skill_mastery(self, user_id: str) -> dict[str, SkillMastery]:
        return await asyncio.to_thread(self._fetch, user_id)

    def _fetch(self, user_id: str) -> dict[str, SkillMastery]:
        stmt = select(SkillMasteryRow).where(SkillMasteryRow.user_id == user_id)
        try:
            with session_scope(self._session_factory) as session:
                rows = [
                    (r.skill_id, r.mastery_probability, r.total_attempts, r.correct_attempts, r.last_attempt_at, r.subject)
                    for r in session.scalars(stmt).all()
                ]
        except SQLAlchemyError as e:
            logger.warning(f"Skill mastery query failed for {user_id}: {e}")
            raise MasteryStoreError(f"Failed to fetch skill mastery: {e}") from e

        try:
            return {
                skill_id: SkillMastery(
                    skill_id=skill_id,
                    mastery_probability=probability,
                    total_attempts=total or 0,
                    correct_attempts=correct or 0,
                    last_attempt_at=last_attempt_at,
                    subject=subject,
                )
                for skill_id, probability, total, correct, last_attempt_at, subject in rows
            }
        # pydantic.ValidationError is a ValueError
        except ValueError as e:
            logger.warning(f"Malformed skill mastery row for {user_id}: {e}")
            raise MasteryStoreError(f"Malformed skill mastery row: {e}") from e
