"""
Reasoning Enricher.

Attaches alternatives and human-readable reasoning to the selected set.
Derivational only: scores and the selected set are never changed, new
objects are returned via dataclasses.replace.
"""
from __future__ import annotations

from dataclasses import replace

from src.recommender.models import (
    AlternativeQuestion,
    LearnerState,
    PrimaryFactor,
    QuestionRecommendation,
    RecommendationStrategy,
    ZPDData,
)

MAX_ALTERNATIVES = 2

PRIMARY_FACTOR_PHRASES = {
    PrimaryFactor.SKILL_GAP: "closes a skill gap",
    PrimaryFactor.KNOWLEDGE_CONSOLIDATION: "builds on prerequisites already in place",
    PrimaryFactor.DIFFICULTY_PROGRESSION: "sits at the right challenge level",
    PrimaryFactor.TIME_OPTIMIZATION: "fits the time available",
    PrimaryFactor.ENGAGEMENT_BOOST: "matches how you like to learn",
}


def describe_zpd(difficulty: float, zpd_data: ZPDData) -> str:
    if zpd_data.contains(difficulty):
        return (
            f"difficulty {difficulty:.2f} within ZPD "
            f"[{zpd_data.lower_bound:.2f}, {zpd_data.upper_bound:.2f}]"
        )
    if difficulty > zpd_data.upper_bound:
        return f"difficulty {difficulty:.2f} above ZPD by {difficulty - zpd_data.upper_bound:.2f}"
    return f"difficulty {difficulty:.2f} below ZPD by {zpd_data.lower_bound - difficulty:.2f}"


class ReasoningEnricher:
    """Adds alternatives and summaries to selected recommendations."""

    def enrich(
        self,
        selected: list[QuestionRecommendation],
        ranked_pool: list[QuestionRecommendation],
        learner_state: LearnerState,
        strategy: RecommendationStrategy,
        zpd_data: ZPDData,
    ) -> list[QuestionRecommendation]:
        selected_ids = {r.question_id for r in selected}
        unselected = [r for r in ranked_pool if r.question_id not in selected_ids]

        enriched = []
        for recommendation in selected:
            alternatives = self.alternatives_for(recommendation, unselected, zpd_data)
            reasoning = replace(
                recommendation.reasoning,
                summary=self.summarize(recommendation, learner_state, strategy),
                zpd_summary=describe_zpd(recommendation.difficulty, zpd_data),
            )
            enriched.append(replace(recommendation, alternatives=alternatives, reasoning=reasoning))
        return enriched

    def alternatives_for(
        self,
        recommendation: QuestionRecommendation,
        unselected: list[QuestionRecommendation],
        zpd_data: ZPDData,
    ) -> list[AlternativeQuestion]:
        skills = set(recommendation.skills)
        alternatives = []
        for other in unselected:
            if not skills & set(other.skills):
                continue
            alternatives.append(
                AlternativeQuestion(
                    question_id=other.question_id,
                    reason=self._alternative_reason(recommendation, other, zpd_data),
                    priority=other.priority,
                    difference=self._difference(recommendation, other),
                )
            )
            if len(alternatives) >= MAX_ALTERNATIVES:
                break
        return alternatives

    def summarize(
        self,
        recommendation: QuestionRecommendation,
        learner_state: LearnerState,
        strategy: RecommendationStrategy,
    ) -> str:
        reasoning = recommendation.reasoning
        skill = recommendation.primary_skill
        mastery = learner_state.mastery_of(skill)
        phrase = PRIMARY_FACTOR_PHRASES[reasoning.primary_factor]
        return (
            f"{strategy.display_name}: {skill} question that {phrase} "
            f"(current mastery {mastery:.0%}, expected success "
            f"{recommendation.expected_outcome.success_probability:.0%})"
        )

    def _alternative_reason(
        self,
        recommendation: QuestionRecommendation,
        other: QuestionRecommendation,
        zpd_data: ZPDData,
    ) -> str:
        if other.difficulty > zpd_data.upper_bound:
            return "higher difficulty than current ZPD"
        if other.difficulty < zpd_data.lower_bound:
            return "lower difficulty than current ZPD"
        if other.estimated_time_seconds < recommendation.estimated_time_seconds:
            return "shorter question on the same skill"
        if set(other.concepts) - set(recommendation.concepts):
            return "covers related concepts"
        return "similar practice on the same skill"

    def _difference(self, recommendation: QuestionRecommendation, other: QuestionRecommendation) -> str:
        parts = []
        if other.difficulty != recommendation.difficulty:
            parts.append(f"difficulty {other.difficulty:.2f} vs {recommendation.difficulty:.2f}")
        if other.estimated_time_seconds != recommendation.estimated_time_seconds:
            parts.append(
                f"time {other.estimated_time_seconds}s vs {recommendation.estimated_time_seconds}s"
            )
        extra_skills = [s for s in other.skills if s not in recommendation.skills]
        if extra_skills:
            parts.append("adds " + ", ".join(extra_skills))
        return "; ".join(parts) or "same profile"
