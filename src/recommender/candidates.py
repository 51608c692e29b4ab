"""
Candidate Generator.

Expands the top priority identifiers into a bounded pool of questions.
One store read is issued per (skill, difficulty tier) pair, concurrently;
results are merged deterministically by sorting on (-relevance, id).
"""
from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from loguru import logger

from src.recommender.config import RELEVANCE_LOW_MASTERY, EngineConfig
from src.recommender.models import (
    LearningAnalysis,
    PriorityArea,
    Question,
    QuestionCandidate,
    RecommendationStrategy,
    ZPDData,
)
from src.recommender.repositories import QuestionRepository

ALL_TIERS = ("easy", "medium", "hard")
OPTIMAL_SUCCESS_RATE = 0.7


def difficulty_tiers_for(optimal: float) -> list[str]:
    """Tiers worth fetching for a given optimal difficulty."""
    if optimal <= 0.4:
        return ["easy"]
    if optimal <= 0.7:
        return ["easy", "medium"]
    return ["medium", "hard"]


def calculate_relevance(question: Question, target_skill: str, analysis: LearningAnalysis) -> float:
    """How relevant a question is for a target skill and this learner, in [0, 1]."""
    score = 0.0
    if question.primary_skill == target_skill:
        score += 0.4
    if target_skill in question.secondary_skills:
        score += 0.2

    mastery = analysis.mastery_of(question.primary_skill)
    if mastery is not None and mastery < RELEVANCE_LOW_MASTERY:
        score += 0.2

    success_rate = analysis.success_rate_of(question.primary_skill)
    if success_rate is not None and success_rate < 0.5:
        score += 0.1

    # Prefer less-used questions
    score += max(0.0, 0.1 - question.times_used * 0.01)

    # Prefer questions with a moderate success rate
    if question.success_rate is not None:
        score += max(0.0, 0.1 - abs(question.success_rate - OPTIMAL_SUCCESS_RATE))

    return max(0.0, min(1.0, score))


def to_candidate(question: Question, relevance: float) -> QuestionCandidate:
    return QuestionCandidate(
        question_id=question.id,
        skills=question.skills,
        concepts=question.concept_tags,
        difficulty=question.difficulty_value,
        estimated_time_seconds=question.estimated_time_seconds,
        relevance_score=relevance,
        question=question,
    )


class CandidateGenerator:
    """Builds the candidate pool from the question store."""

    def __init__(self, question_repository: QuestionRepository, config: Optional[EngineConfig] = None):
        self.repository = question_repository
        self.config = config or EngineConfig()

    def priority_identifiers(self, priority_areas: list[PriorityArea]) -> list[str]:
        identifiers: list[str] = []
        for area in priority_areas:
            if area.identifier not in identifiers:
                identifiers.append(area.identifier)
            if len(identifiers) >= self.config.max_priority_skills:
                break
        return identifiers

    async def generate(
        self,
        priority_areas: list[PriorityArea],
        zpd_data: ZPDData,
        strategy: RecommendationStrategy,
        analysis: LearningAnalysis,
        learner_id: Optional[str] = None,
    ) -> list[QuestionCandidate]:
        skills = self.priority_identifiers(priority_areas)
        if not skills:
            skills = list(self.config.default_skills)
            logger.debug("No priority areas, using default skills {}", skills)

        tiers = difficulty_tiers_for(zpd_data.optimal)
        candidates = await self._fetch_pool(skills, tiers, analysis)

        # Empty-result recovery: widen tiers, then default skills, then anything
        if not candidates and len(tiers) < len(ALL_TIERS):
            logger.warning(f"No candidates for {learner_id} at tiers {tiers}, widening to all tiers")
            candidates = await self._fetch_pool(skills, list(ALL_TIERS), analysis)

        defaults = list(self.config.default_skills)
        if not candidates and skills != defaults:
            logger.warning(f"No candidates for {learner_id} on priority skills, trying default skills")
            candidates = await self._fetch_pool(defaults, list(ALL_TIERS), analysis)

        if not candidates:
            logger.warning(f"No candidates for {learner_id} on default skills, fetching least-used questions")
            questions = await self.repository.fetch_questions(limit=self.config.max_candidates)
            candidates = [
                to_candidate(q, calculate_relevance(q, q.primary_skill, analysis)) for q in questions
            ]

        pool = self._dedupe_and_rank(candidates)
        logger.info(f"Generated {len(pool)} candidate questions using strategy '{strategy.name}'")
        return pool

    async def _fetch_pool(
        self, skills: Sequence[str], tiers: Sequence[str], analysis: LearningAnalysis
    ) -> list[QuestionCandidate]:
        pairs = [(skill, tier) for skill in skills for tier in tiers]
        results = await asyncio.gather(
            *(
                self.repository.fetch_questions(
                    skills=[skill], difficulty=tier, limit=self.config.questions_per_bucket
                )
                for skill, tier in pairs
            )
        )

        candidates = []
        for (skill, _tier), questions in zip(pairs, results):
            for question in questions:
                candidates.append(to_candidate(question, calculate_relevance(question, skill, analysis)))
        return candidates

    def _dedupe_and_rank(self, candidates: list[QuestionCandidate]) -> list[QuestionCandidate]:
        best: dict[str, QuestionCandidate] = {}
        for candidate in candidates:
            current = best.get(candidate.question_id)
            if current is None or candidate.relevance_score > current.relevance_score:
                best[candidate.question_id] = candidate

        ranked = sorted(best.values(), key=lambda c: (-c.relevance_score, c.question_id))
        return ranked[: self.config.max_candidates]
