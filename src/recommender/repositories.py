"""
Repository interfaces for the recommendation engine.

The engine reads questions and mastery snapshots through these protocols.
Production adapters live in src/db/repositories.py (SQLAlchemy) and
src/integrations/question_api_client.py (REST). The in-memory versions here
back the CLI's catalog mode and the tests.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

from src.recommender.exceptions import MasteryStoreError, QuestionStoreError
from src.recommender.models import Question, SkillMastery, UserQuestionAnalytics


@runtime_checkable
class QuestionRepository(Protocol):
    """Read access to the question bank."""

    async def fetch_questions(
        self,
        *,
        subject: Optional[str] = None,
        difficulty: Optional[str] = None,
        skills: Optional[Sequence[str]] = None,
        limit: int = 50,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> list[Question]:
        """Questions matching the filters, least-used first."""
        ...

    async def fetch_questions_by_ids(self, ids: Sequence[str]) -> list[Question]:
        ...

    async def fetch_user_question_analytics(
        self, user_id: str, question_ids: Sequence[str]
    ) -> dict[str, UserQuestionAnalytics]:
        """Per-question attempt history for one learner (missing ids omitted)."""
        ...


@runtime_checkable
class MasteryRepository(Protocol):
    """Read access to per-learner skill mastery snapshots."""

    async def fetch_skill_mastery(self, user_id: str) -> dict[str, SkillMastery]:
        ...


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class InMemoryQuestionRepository:
    """Question store backed by a list, mirroring the SQL adapter's ordering."""

    def __init__(self, questions: Iterable[Question] = ()):
        self._questions: dict[str, Question] = {q.id: q for q in questions}
        # user_id -> question_id -> [(correct, response_time, answered_at)]
        self._attempts: dict[str, dict[str, list[tuple[bool, float, datetime]]]] = {}
        self.fail_with: Optional[str] = None
        self.calls: list[dict] = []

    def add(self, question: Question) -> None:
        self._questions[question.id] = question

    def record_attempt(
        self,
        user_id: str,
        question_id: str,
        correct: bool,
        response_time_seconds: float,
        answered_at: datetime,
    ) -> None:
        self._attempts.setdefault(user_id, {}).setdefault(question_id, []).append(
            (correct, response_time_seconds, answered_at)
        )

    def _check_available(self) -> None:
        if self.fail_with:
            raise QuestionStoreError(self.fail_with)

    async def fetch_questions(
        self,
        *,
        subject: Optional[str] = None,
        difficulty: Optional[str] = None,
        skills: Optional[Sequence[str]] = None,
        limit: int = 50,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> list[Question]:
        self.calls.append(
            {"subject": subject, "difficulty": difficulty, "skills": list(skills or []), "limit": limit}
        )
        self._check_available()

        excluded = set(exclude_ids or ())
        wanted = set(skills or ())
        rows = [
            q
            for q in self._questions.values()
            if (subject is None or q.subject == subject)
            and (difficulty is None or q.difficulty == difficulty)
            and (not wanted or q.primary_skill in wanted)
            and q.id not in excluded
        ]
        rows.sort(key=lambda q: (q.times_used, q.id))
        return rows[:limit]

    async def fetch_questions_by_ids(self, ids: Sequence[str]) -> list[Question]:
        self._check_available()
        return [self._questions[i] for i in ids if i in self._questions]

    async def fetch_user_question_analytics(
        self, user_id: str, question_ids: Sequence[str]
    ) -> dict[str, UserQuestionAnalytics]:
        self._check_available()
        result: dict[str, UserQuestionAnalytics] = {}
        user_attempts = self._attempts.get(user_id, {})
        for qid in question_ids:
            attempts = user_attempts.get(qid)
            if not attempts:
                continue
            last = max(attempts, key=lambda a: a[2])
            result[qid] = UserQuestionAnalytics(
                attempts=len(attempts),
                last_correct=last[0],
                average_time=round(sum(a[1] for a in attempts) / len(attempts)),
                last_attempted=last[2],
            )
        return result


class InMemoryMasteryRepository:
    """Mastery store keyed by user id."""

    def __init__(self, mastery: Optional[dict[str, dict[str, SkillMastery]]] = None):
        self._mastery = mastery or {}
        self.fail_with: Optional[str] = None

    def set_mastery(self, user_id: str, skills: dict[str, SkillMastery]) -> None:
        self._mastery[user_id] = dict(skills)

    async def fetch_skill_mastery(self, user_id: str) -> dict[str, SkillMastery]:
        if self.fail_with:
            raise MasteryStoreError(self.fail_with)
        return dict(self._mastery.get(user_id, {}))
