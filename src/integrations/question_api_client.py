"""
REST client for a remote question store.

Talks to a PostgREST-style API exposing the `questions`, `question_analytics`
and `skill_mastery` tables. Implements both QuestionRepository and
MasteryRepository so the engine can run without a direct database
connection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence

import httpx
from loguru import logger

from config import Settings, get_settings
from src.recommender.exceptions import MasteryStoreError, QuestionStoreError
from src.recommender.models import Question, SkillMastery, UserQuestionAnalytics


def _in_filter(values: Sequence[str]) -> str:
    return "in.(" + ",".join(values) + ")"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def question_from_dict(data: dict[str, Any]) -> Question:
    """Parse a question row from the API response."""
    return Question(
        id=str(data["id"]),
        primary_skill=data["primary_skill"],
        difficulty=data.get("difficulty") or "medium",
        subject=data.get("subject") or "math",
        question_type=data.get("question_type") or "multiple_choice",
        secondary_skills=tuple(data.get("secondary_skills") or ()),
        concepts=tuple(data.get("concepts") or ()),
        prerequisites=tuple(data.get("prerequisites") or ()),
        estimated_time_seconds=int(data.get("estimated_time_seconds") or 90),
        times_used=int(data.get("times_used") or 0),
        success_rate=data.get("success_rate"),
        average_response_time=data.get("average_response_time"),
        question_text=data.get("question_text") or "",
    )


class QuestionApiClient:
    """HTTP client for the remote question store."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the REST API
            api_key: Bearer token (omitted from headers when empty)
            timeout_seconds: Per-request timeout
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key

        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "QuestionApiClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.question_api_url,
            api_key=settings.question_api_key,
            timeout_seconds=settings.question_api_timeout_seconds,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "QuestionApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_rows(self, path: str, params: dict[str, str], error_cls: type) -> list[dict[str, Any]]:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Question API returned {e.response.status_code} for {path}")
            raise error_cls(f"{path} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Question API request to {path} failed: {e}")
            raise error_cls(f"{path} request failed: {e}") from e
        except ValueError as e:
            raise error_cls(f"{path} returned invalid JSON") from e

        if not isinstance(data, list):
            raise error_cls(f"{path} returned {type(data).__name__}, expected a list")
        return data

    def _parse_questions(self, rows: list[dict[str, Any]]) -> list[Question]:
        try:
            return [question_from_dict(row) for row in rows]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise QuestionStoreError(f"Malformed question row: {e}") from e

    # ========================================
    # QuestionRepository
    # ========================================

    async def fetch_questions(
        self,
        *,
        subject: Optional[str] = None,
        difficulty: Optional[str] = None,
        skills: Optional[Sequence[str]] = None,
        limit: int = 50,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> list[Question]:
        params = {
            "select": "*",
            "order": "times_used.asc,created_at.desc,id.asc",
            "limit": str(limit),
        }
        if subject:
            params["subject"] = f"eq.{subject}"
        if difficulty:
            params["difficulty"] = f"eq.{difficulty}"
        if skills:
            params["primary_skill"] = _in_filter(skills)
        if exclude_ids:
            params["id"] = "not." + _in_filter(exclude_ids)

        rows = await self._get_rows("/questions", params, QuestionStoreError)
        return self._parse_questions(rows)

    async def fetch_questions_by_ids(self, ids: Sequence[str]) -> list[Question]:
        if not ids:
            return []
        rows = await self._get_rows(
            "/questions", {"select": "*", "id": _in_filter(ids)}, QuestionStoreError
        )
        by_id = {q.id: q for q in self._parse_questions(rows)}
        return [by_id[i] for i in ids if i in by_id]

    async def fetch_user_question_analytics(
        self, user_id: str, question_ids: Sequence[str]
    ) -> dict[str, UserQuestionAnalytics]:
        if not question_ids:
            return {}
        rows = await self._get_rows(
            "/question_analytics",
            {
                "select": "question_id,is_correct,response_time_seconds,answered_at",
                "user_id": f"eq.{user_id}",
                "question_id": _in_filter(question_ids),
            },
            QuestionStoreError,
        )
        return self._parse_analytics(rows)

    def _parse_analytics(self, rows: list[dict[str, Any]]) -> dict[str, UserQuestionAnalytics]:
        try:
            grouped: dict[str, list[dict[str, Any]]] = {}
            for row in rows:
                grouped.setdefault(str(row["question_id"]), []).append(row)

            analytics = {}
            for question_id, attempts in grouped.items():
                latest = max(attempts, key=lambda a: str(a.get("answered_at") or ""))
                times = [float(a.get("response_time_seconds") or 0) for a in attempts]
                analytics[question_id] = UserQuestionAnalytics(
                    attempts=len(attempts),
                    last_correct=latest.get("is_correct"),
                    average_time=round(sum(times) / len(times)),
                    last_attempted=_parse_timestamp(latest.get("answered_at")),
                )
            return analytics
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise QuestionStoreError(f"Malformed analytics row: {e}") from e

    # ========================================
    # MasteryRepository
    # ========================================

    async def fetch_skill_mastery(self, user_id: str) -> dict[str, SkillMastery]:
        rows = await self._get_rows(
            "/skill_mastery", {"select": "*", "user_id": f"eq.{user_id}"}, MasteryStoreError
        )
        try:
            mastery = {}
            for row in rows:
                skill_id = row.get("skill_id") or row.get("skill_name")
                mastery[skill_id] = SkillMastery(
                    skill_id=skill_id,
                    mastery_probability=float(row.get("mastery_probability") or 0.0),
                    total_attempts=int(row.get("total_attempts") or 0),
                    correct_attempts=int(row.get("correct_attempts") or 0),
                    last_attempt_at=_parse_timestamp(row.get("last_attempt_at")),
                    subject=row.get("subject"),
                )
            return mastery
        # pydantic's ValidationError is a ValueError
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Malformed skill mastery row for {user_id}: {e}")
            raise MasteryStoreError(f"Malformed skill mastery row: {e}") from e
