"""
Diversity Optimizer.

Picks `count` recommendations from the ranked pool, preferring candidates
that cover skills and concepts not yet in the set. The top-ranked candidate
is always kept and the result size is always min(count, len(pool)).
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from src.recommender.config import EngineConfig
from src.recommender.models import QuestionRecommendation, RecommendationStrategy


def diversity_score(
    recommendation: QuestionRecommendation, used_skills: set[str], used_concepts: set[str]
) -> float:
    """Mean share of uncovered skills and uncovered concepts (empty lists count as 0)."""
    skills = recommendation.skills
    concepts = recommendation.concepts
    skill_diversity = (
        sum(1 for s in skills if s not in used_skills) / len(skills) if skills else 0.0
    )
    concept_diversity = (
        sum(1 for c in concepts if c not in used_concepts) / len(concepts) if concepts else 0.0
    )
    return (skill_diversity + concept_diversity) / 2


class DiversityOptimizer:
    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def optimize(
        self,
        ranked: list[QuestionRecommendation],
        count: int,
        strategy: Optional[RecommendationStrategy] = None,
    ) -> list[QuestionRecommendation]:
        if count <= 0:
            return []
        if len(ranked) <= count:
            return list(ranked)

        selected = [ranked[0]]
        selected_ids = {ranked[0].question_id}
        used_skills = set(ranked[0].skills)
        used_concepts = set(ranked[0].concepts)

        for candidate in ranked[1:]:
            if len(selected) >= count:
                break
            score = diversity_score(candidate, used_skills, used_concepts)
            if (
                candidate.priority > self.config.high_priority_threshold
                or score > self.config.diversity_threshold
            ):
                selected.append(candidate)
                selected_ids.add(candidate.question_id)
                used_skills.update(candidate.skills)
                used_concepts.update(candidate.concepts)

        # Backfill with the next-highest combined scores
        if len(selected) < count:
            remaining = [
                (position, r) for position, r in enumerate(ranked) if r.question_id not in selected_ids
            ]
            remaining.sort(key=lambda item: (-item[1].priority, item[0]))
            backfill = [r for _, r in remaining[: count - len(selected)]]
            selected.extend(backfill)
            logger.debug(f"Backfilled {len(backfill)} recommendations")

        return selected
