"""
Priority-Area Identifier.

Four independent heuristics each propose focus areas:

1. Knowledge gap      - skills with mastery below 0.7
2. Recent struggle    - skills with repeated errors in the last 15 attempts
3. Prerequisite gap   - weak prerequisites of skills still being learned
4. Goal alignment     - skills implied by the session's goals

merge_priority_areas() then collapses entries that share (type, identifier).
"""
from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional

from loguru import logger

from src.recommender.config import (
    GOAL_MASTERY_TARGET,
    HIGH_URGENCY_MASTERY,
    KNOWLEDGE_GAP_THRESHOLD,
    PREREQUISITE_MASTERY,
    EngineConfig,
)
from src.recommender.models import (
    LearnerProfile,
    LearnerState,
    LearningContext,
    PriorityArea,
    PriorityType,
    SkillMastery,
    Urgency,
)
from src.recommender.skill_graph import SkillGraph

MASTERY_TARGET = 0.9
MINUTES_PER_MASTERY_UNIT = 60.0
MINUTES_PER_ERROR = 15
STRUGGLE_MIN_ERRORS = 2
STRUGGLE_HIGH_ERRORS = 3
STRUGGLE_PRIORITY_PER_ERROR = 0.3
GOAL_PRIORITY = 0.8
MAX_PREREQUISITE_PRIORITY = 1.5
BLOCKED_DEPENDENT_BONUS = 0.25


def estimate_time_to_mastery(mastery: float) -> float:
    """Minutes of practice to bring a skill from `mastery` to 0.9."""
    return round(max(0.0, MASTERY_TARGET - mastery) * MINUTES_PER_MASTERY_UNIT, 1)


def merge_priority_areas(areas: Iterable[PriorityArea]) -> list[PriorityArea]:
    """
    Collapse areas that share (type, identifier).

    Priorities are summed, the highest urgency is kept, reasons and
    prerequisites are unioned in first-seen order and time investment is
    the maximum. Result is sorted by descending priority, then identifier.
    """
    merged: dict[tuple[PriorityType, str], PriorityArea] = {}
    for area in areas:
        existing = merged.get(area.key)
        if existing is None:
            merged[area.key] = PriorityArea(
                type=area.type,
                identifier=area.identifier,
                priority=area.priority,
                reasons=list(area.reasons),
                urgency=area.urgency,
                time_investment_minutes=area.time_investment_minutes,
                prerequisites=list(area.prerequisites),
            )
            continue

        existing.priority += area.priority
        if area.urgency.rank > existing.urgency.rank:
            existing.urgency = area.urgency
        existing.reasons.extend(r for r in area.reasons if r not in existing.reasons)
        existing.prerequisites.extend(p for p in area.prerequisites if p not in existing.prerequisites)
        existing.time_investment_minutes = max(
            existing.time_investment_minutes, area.time_investment_minutes
        )

    return sorted(merged.values(), key=lambda a: (-a.priority, a.identifier, a.type.value))


class PriorityAreaIdentifier:
    """Runs the priority heuristics against a learner snapshot."""

    def __init__(self, skill_graph: Optional[SkillGraph] = None, config: Optional[EngineConfig] = None):
        self.graph = skill_graph or SkillGraph()
        self.config = config or EngineConfig()

    def identify(
        self,
        learner_state: LearnerState,
        context: LearningContext,
        profile: Optional[LearnerProfile] = None,
    ) -> list[PriorityArea]:
        areas: list[PriorityArea] = []
        areas.extend(self.knowledge_gaps(learner_state))
        areas.extend(self.recent_struggles(learner_state))
        areas.extend(self.prerequisite_gaps(learner_state))
        areas.extend(self.goal_alignment(learner_state, context))

        merged = merge_priority_areas(areas)
        logger.debug(
            "Priority areas for {}: {} raw, {} merged",
            learner_state.learner_id,
            len(areas),
            len(merged),
        )
        return merged

    # =========================================================================
    # Heuristics
    # =========================================================================

    def knowledge_gaps(self, learner_state: LearnerState) -> list[PriorityArea]:
        areas = []
        for skill in learner_state.skills.values():
            m = skill.mastery_probability
            if m >= KNOWLEDGE_GAP_THRESHOLD:
                continue
            areas.append(
                PriorityArea(
                    type=PriorityType.SKILL,
                    identifier=skill.skill_id,
                    priority=(KNOWLEDGE_GAP_THRESHOLD - m) * 2,
                    reasons=["knowledge_gap"],
                    urgency=Urgency.HIGH if m < HIGH_URGENCY_MASTERY else Urgency.MEDIUM,
                    time_investment_minutes=estimate_time_to_mastery(m),
                    prerequisites=self.graph.prerequisites_of(skill.skill_id),
                )
            )
        return areas

    def recent_struggles(self, learner_state: LearnerState) -> list[PriorityArea]:
        recent = learner_state.recent_performance(self.config.struggle_window)
        errors = Counter(r.skill_id for r in recent if not r.correct)

        areas = []
        for skill_id, count in errors.items():
            if count < STRUGGLE_MIN_ERRORS:
                continue
            areas.append(
                PriorityArea(
                    type=PriorityType.SKILL,
                    identifier=skill_id,
                    priority=count * STRUGGLE_PRIORITY_PER_ERROR,
                    reasons=["recent_struggles"],
                    urgency=Urgency.HIGH if count >= STRUGGLE_HIGH_ERRORS else Urgency.MEDIUM,
                    time_investment_minutes=float(MINUTES_PER_ERROR * count),
                    prerequisites=self.graph.prerequisites_of(skill_id),
                )
            )
        return areas

    def prerequisite_gaps(self, learner_state: LearnerState) -> list[PriorityArea]:
        """Flag weak prerequisites (known mastery < 0.7) of skills below 0.8."""
        blocked: dict[str, list[str]] = {}
        for skill_id in self.graph.skills_with_prerequisites():
            if learner_state.mastery_of(skill_id) >= GOAL_MASTERY_TARGET:
                continue
            for prereq in self.graph.prerequisites_of(skill_id):
                known: Optional[SkillMastery] = learner_state.skills.get(prereq)
                if known is None or known.mastery_probability >= PREREQUISITE_MASTERY:
                    continue
                blocked.setdefault(prereq, []).append(skill_id)

        areas = []
        for prereq, dependents in blocked.items():
            m = learner_state.skills[prereq].mastery_probability
            priority = min(
                MAX_PREREQUISITE_PRIORITY,
                (PREREQUISITE_MASTERY - m) * 1.5 + BLOCKED_DEPENDENT_BONUS * len(dependents),
            )
            areas.append(
                PriorityArea(
                    type=PriorityType.PREREQUISITE,
                    identifier=prereq,
                    priority=priority,
                    reasons=["prerequisite_gap"] + [f"blocks {d}" for d in dependents],
                    urgency=Urgency.HIGH,
                    time_investment_minutes=estimate_time_to_mastery(m),
                    prerequisites=self.graph.prerequisites_of(prereq),
                )
            )
        return areas

    def goal_alignment(self, learner_state: LearnerState, context: LearningContext) -> list[PriorityArea]:
        areas = []
        for goal in context.current_goals:
            for skill_id in self.graph.skills_for_goal(goal):
                skill = learner_state.skills.get(skill_id)
                if skill is None or skill.mastery_probability >= GOAL_MASTERY_TARGET:
                    continue
                areas.append(
                    PriorityArea(
                        type=PriorityType.GOAL,
                        identifier=skill_id,
                        priority=GOAL_PRIORITY,
                        reasons=["goal_alignment"],
                        urgency=Urgency.MEDIUM,
                        time_investment_minutes=estimate_time_to_mastery(skill.mastery_probability),
                        prerequisites=self.graph.prerequisites_of(skill_id),
                    )
                )
        return areas
