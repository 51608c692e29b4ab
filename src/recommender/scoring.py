"""
Candidate Scorer / Ranker.

Every candidate gets six sub-scores in [0, 1]:

    mastery       mean(1 - mastery) over the candidate's skills
    difficulty    ZPD fit, smooth exponential falloff outside the band
    engagement    profile fit (style vs question type, strengths, goals, energy)
    time          estimated time against the session budget
    prerequisite  share of prerequisites already at mastery >= 0.7
    novelty       how fresh the question is for this learner

The combined score is the strategy-weighted mean of the first five plus a
stress-fit term, scaled by a novelty modifier. Ranking is by combined score;
scores closer than the tie-break margin are ordered by ZPD alignment, and
question id settles anything left.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import cmp_to_key
from statistics import mean
from typing import Callable, Optional

from loguru import logger

from src.recommender.config import PREREQUISITE_MASTERY, EngineConfig
from src.recommender.models import (
    AdaptiveMetrics,
    ExpectedOutcome,
    FactorType,
    LearnerProfile,
    LearnerState,
    LearningAnalysis,
    LearningContext,
    PrimaryFactor,
    Question,
    QuestionCandidate,
    QuestionRecommendation,
    ReasoningFactor,
    RecommendationReasoning,
    RecommendationStrategy,
    UserQuestionAnalytics,
    ZPDData,
)
from src.recommender.repositories import QuestionRepository
from src.recommender.skill_graph import SkillGraph
from src.recommender.zpd import ZPDCalculator, difficulty_fit, zpd_alignment

# Question types that suit each learning style
STYLE_QUESTION_TYPES = {
    "analytical": {"free_response", "grid_in"},
    "methodical": {"free_response", "grid_in"},
    "visual": {"multiple_choice"},
    "intuitive": {"multiple_choice"},
}

PACE_TIME_FACTOR = {"fast": 0.85, "moderate": 1.0, "careful": 1.2}
NOVELTY_DECAY_DAYS = 7.0

FACTOR_TO_PRIMARY = {
    "mastery": PrimaryFactor.SKILL_GAP,
    "difficulty": PrimaryFactor.DIFFICULTY_PROGRESSION,
    "engagement": PrimaryFactor.ENGAGEMENT_BOOST,
    "time": PrimaryFactor.TIME_OPTIMIZATION,
    "prerequisite": PrimaryFactor.KNOWLEDGE_CONSOLIDATION,
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


@dataclass
class SubScores:
    """Raw factor values for one candidate."""

    mastery: float
    difficulty: float
    engagement: float
    time: float
    prerequisite: float
    novelty: float
    stress_fit: float
    zpd_alignment: float
    optimal_difficulty: float

    def weighted(self, strategy: RecommendationStrategy) -> float:
        w = strategy.weights
        total = w.total
        if total <= 0:
            return 0.0
        raw = (
            w.mastery_priority * self.mastery
            + w.difficulty_optimization * self.difficulty
            + w.time_constraints * self.time
            + w.engagement_factor * self.engagement
            + w.stress_consideration * self.stress_fit
            + w.prerequisite_importance * self.prerequisite
        )
        return raw / total

    def combined(self, strategy: RecommendationStrategy) -> float:
        return _clamp(self.weighted(strategy) * (0.85 + 0.15 * self.novelty))


class CandidateScorer:
    """Scores candidates and produces ranked QuestionRecommendations."""

    def __init__(
        self,
        question_repository: Optional[QuestionRepository] = None,
        zpd_calculator: Optional[ZPDCalculator] = None,
        skill_graph: Optional[SkillGraph] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or EngineConfig()
        self.repository = question_repository
        self.zpd = zpd_calculator or ZPDCalculator(self.config)
        self.graph = skill_graph or SkillGraph()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def score_and_rank(
        self,
        candidates: list[QuestionCandidate],
        learner_state: LearnerState,
        context: LearningContext,
        profile: LearnerProfile,
        strategy: RecommendationStrategy,
        zpd_data: ZPDData,
        analysis: Optional[LearningAnalysis] = None,
        learner_id: Optional[str] = None,
    ) -> list[QuestionRecommendation]:
        if not candidates:
            return []

        questions = await self._resolve_questions(candidates)
        analytics: dict[str, UserQuestionAnalytics] = {}
        if learner_id and self.repository is not None:
            analytics = await self.repository.fetch_user_question_analytics(
                learner_id, [c.question_id for c in candidates]
            )

        goal_skills = {s for goal in context.current_goals for s in self.graph.skills_for_goal(goal)}
        recommendations = []
        for candidate in candidates:
            question = questions.get(candidate.question_id)
            if question is None:
                logger.debug(f"Dropping candidate {candidate.question_id}: question not found")
                continue

            scores = self.sub_scores(
                candidate,
                question,
                learner_state,
                context,
                profile,
                goal_skills,
                analytics.get(candidate.question_id),
            )
            recommendations.append(
                self._build_recommendation(
                    candidate,
                    question,
                    scores,
                    learner_state,
                    profile,
                    strategy,
                    zpd_data,
                    analysis,
                    analytics.get(candidate.question_id),
                )
            )

        return self.rank(recommendations)

    def rank(self, recommendations: list[QuestionRecommendation]) -> list[QuestionRecommendation]:
        margin = self.config.tie_break_margin

        def compare(a: QuestionRecommendation, b: QuestionRecommendation) -> int:
            diff = b.priority - a.priority
            if abs(diff) < margin:
                alignment = b.reasoning.zpd_alignment - a.reasoning.zpd_alignment
                if alignment:
                    return 1 if alignment > 0 else -1
            if diff:
                return 1 if diff > 0 else -1
            return (a.question_id > b.question_id) - (a.question_id < b.question_id)

        # Fixed input order keeps the result stable for the non-transitive tie-break
        ordered = sorted(recommendations, key=lambda r: (-r.priority, r.question_id))
        return sorted(ordered, key=cmp_to_key(compare))

    # =========================================================================
    # Sub-scores
    # =========================================================================

    def sub_scores(
        self,
        candidate: QuestionCandidate,
        question: Question,
        learner_state: LearnerState,
        context: LearningContext,
        profile: LearnerProfile,
        goal_skills: set[str],
        analytics: Optional[UserQuestionAnalytics],
    ) -> SubScores:
        optimal = self.zpd.calculate_optimal_difficulty(learner_state, candidate.skills)
        time_score = self.time_score(question.estimated_time_seconds, context)
        return SubScores(
            mastery=self.mastery_score(candidate, learner_state),
            difficulty=difficulty_fit(candidate.difficulty, optimal, self.config.zpd_tolerance),
            engagement=self.engagement_score(question, profile, context, goal_skills),
            time=time_score,
            prerequisite=self.prerequisite_score(candidate, question, learner_state),
            novelty=self.novelty_score(analytics),
            stress_fit=_clamp(1.0 - context.stress_level * (1.0 - time_score)),
            zpd_alignment=zpd_alignment(candidate.difficulty, optimal),
            optimal_difficulty=optimal,
        )

    def mastery_score(self, candidate: QuestionCandidate, learner_state: LearnerState) -> float:
        if not candidate.skills:
            return 0.5
        return mean(1.0 - learner_state.mastery_of(s) for s in candidate.skills)

    def engagement_score(
        self,
        question: Question,
        profile: LearnerProfile,
        context: LearningContext,
        goal_skills: set[str],
    ) -> float:
        skills = set(question.skills)
        score = 0.4
        if question.question_type in STYLE_QUESTION_TYPES.get(profile.learning_style, set()):
            score += 0.15
        if skills & set(profile.strength_areas):
            score += 0.15
        if skills & goal_skills:
            score += 0.1
        score += 0.1 * context.energy_level
        if skills & set(profile.struggling_areas):
            score -= 0.15 * context.stress_level
        return _clamp(score)

    def time_score(self, estimated_seconds: float, context: LearningContext) -> float:
        if context.time_available_seconds <= 0:
            return 0.5
        ratio = estimated_seconds / context.time_available_seconds
        if ratio <= 0.25:
            return 1.0
        return _clamp(1.0 - (ratio - 0.25) / 0.75)

    def prerequisite_score(
        self, candidate: QuestionCandidate, question: Question, learner_state: LearnerState
    ) -> float:
        prerequisites: list[str] = list(question.prerequisites)
        for skill in candidate.skills:
            for prereq in self.graph.prerequisites_of(skill):
                if prereq not in prerequisites:
                    prerequisites.append(prereq)
        if not prerequisites:
            return 1.0
        met = sum(1 for p in prerequisites if learner_state.mastery_of(p) >= PREREQUISITE_MASTERY)
        return met / len(prerequisites)

    def novelty_score(self, analytics: Optional[UserQuestionAnalytics]) -> float:
        """Fresh questions score 1; repeats recover over about a week."""
        if analytics is None or analytics.attempts <= 0:
            score = 1.0
        else:
            if analytics.last_attempted is None:
                recency = 1.0
            else:
                last = analytics.last_attempted
                if last.tzinfo is None:
                    last = last.replace(tzinfo=timezone.utc)
                days = max(0.0, (self.clock() - last).total_seconds() / 86400)
                recency = 1.0 - math.exp(-days / NOVELTY_DECAY_DAYS)
            score = 0.5 / (1 + analytics.attempts) + 0.5 * recency

        return _clamp(score)

    # =========================================================================
    # Assembly
    # =========================================================================

    async def _resolve_questions(self, candidates: list[QuestionCandidate]) -> dict[str, Question]:
        questions = {c.question_id: c.question for c in candidates if c.question is not None}
        missing = [c.question_id for c in candidates if c.question is None]
        if missing and self.repository is not None:
            for question in await self.repository.fetch_questions_by_ids(missing):
                questions[question.id] = question
        return questions

    def _build_recommendation(
        self,
        candidate: QuestionCandidate,
        question: Question,
        scores: SubScores,
        learner_state: LearnerState,
        profile: LearnerProfile,
        strategy: RecommendationStrategy,
        zpd_data: ZPDData,
        analysis: Optional[LearningAnalysis],
        analytics: Optional[UserQuestionAnalytics],
    ) -> QuestionRecommendation:
        combined = scores.combined(strategy)

        known_velocities = analysis.skill_velocities if analysis else {}
        velocities = [known_velocities[s] for s in candidate.skills if s in known_velocities]
        metrics = AdaptiveMetrics(
            mastery_gap=scores.mastery,
            difficulty_fit=scores.zpd_alignment,
            prerequisite_met=scores.prerequisite,
            learning_velocity=mean(velocities) if velocities else 0.0,
            engagement_boost=scores.engagement,
            time_efficiency=scores.time * 60 / max(candidate.estimated_time_seconds, 60),
        )

        return QuestionRecommendation(
            question_id=candidate.question_id,
            question=question,
            skills=list(candidate.skills),
            concepts=list(candidate.concepts),
            difficulty=candidate.difficulty,
            estimated_time_seconds=candidate.estimated_time_seconds,
            relevance_score=candidate.relevance_score,
            priority=combined,
            reasoning=self._reasoning(scores, strategy, zpd_data, combined),
            adaptive_metrics=metrics,
            expected_outcome=self.expected_outcome(candidate, scores, learner_state, profile),
            user_analytics=analytics,
        )

    def expected_outcome(
        self,
        candidate: QuestionCandidate,
        scores: SubScores,
        learner_state: LearnerState,
        profile: LearnerProfile,
    ) -> ExpectedOutcome:
        masteries = {s: learner_state.mastery_of(s) for s in candidate.skills}
        mean_mastery = mean(masteries.values()) if masteries else 0.5

        success = _sigmoid(4 * (mean_mastery - candidate.difficulty) + 1) * (0.7 + 0.3 * scores.prerequisite)
        improvement = {
            skill: (1.0 - m) * 0.1 * scores.difficulty * (0.5 + 0.5 * scores.prerequisite)
            for skill, m in masteries.items()
        }

        return ExpectedOutcome(
            mastery_improvement=improvement,
            confidence_boost=0.2 * success * scores.difficulty,
            engagement_change=(scores.engagement - 0.5) * 0.4,
            time_to_complete=candidate.estimated_time_seconds * PACE_TIME_FACTOR.get(profile.preferred_pace, 1.0),
            success_probability=_clamp(success),
            learning_gain=mean(improvement.values()) if improvement else 0.0,
        )

    def _reasoning(
        self,
        scores: SubScores,
        strategy: RecommendationStrategy,
        zpd_data: ZPDData,
        combined: float,
    ) -> RecommendationReasoning:
        w = strategy.weights
        factors = [
            ReasoningFactor(FactorType.MASTERY_LEVEL, w.mastery_priority, scores.mastery, "skill gap addressed"),
            ReasoningFactor(
                FactorType.RECENT_PERFORMANCE,
                w.difficulty_optimization,
                scores.difficulty,
                f"difficulty fit against optimal {scores.optimal_difficulty:.2f}",
            ),
            ReasoningFactor(FactorType.ENGAGEMENT, w.engagement_factor, scores.engagement, "profile engagement fit"),
            ReasoningFactor(FactorType.TIME_PRESSURE, w.time_constraints, scores.time, "fits the session time budget"),
            ReasoningFactor(
                FactorType.PREREQUISITE, w.prerequisite_importance, scores.prerequisite, "prerequisites in place"
            ),
            ReasoningFactor(FactorType.STRESS_LEVEL, w.stress_consideration, scores.stress_fit, "stress fit"),
        ]

        contributions = {
            "mastery": w.mastery_priority * scores.mastery,
            "difficulty": w.difficulty_optimization * scores.difficulty,
            "engagement": w.engagement_factor * scores.engagement,
            "time": w.time_constraints * scores.time,
            "prerequisite": w.prerequisite_importance * scores.prerequisite,
        }
        # max() keeps the first of equal contributions, in the order above
        dominant = max(contributions, key=lambda k: contributions[k])

        return RecommendationReasoning(
            primary_factor=FACTOR_TO_PRIMARY[dominant],
            factors=factors,
            confidence=_clamp(0.5 * zpd_data.confidence + 0.5 * combined),
            adaptive_strategy=strategy.name,
            zpd_alignment=scores.zpd_alignment,
        )
