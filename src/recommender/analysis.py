"""
Skill State Reader.

Normalizes a learner snapshot into a LearningAnalysis:
- average mastery across known skills
- per-skill learning velocity over the recent window
- engagement and stress trends (first half vs second half of the window)
- time efficiency and consistency of recent attempts
"""
from __future__ import annotations

from statistics import mean
from typing import Optional

from loguru import logger

from src.recommender.config import EngineConfig
from src.recommender.models import (
    LearnerState,
    LearningAnalysis,
    LearningContext,
    PerformanceRecord,
    SkillMastery,
)
from src.recommender.repositories import MasteryRepository

# Response time at or below which an attempt counts as fully efficient
EFFICIENT_RESPONSE_SECONDS = 60.0
MIN_ATTEMPTS_FOR_VELOCITY = 3


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _halves(records: list[PerformanceRecord]) -> tuple[list[PerformanceRecord], list[PerformanceRecord]]:
    mid = len(records) // 2
    return records[:mid], records[mid:]


class SkillStateReader:
    """Read-only analysis of learner state."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    async def hydrate(
        self,
        learner_state: LearnerState,
        mastery_repository: Optional[MasteryRepository],
        learner_id: Optional[str] = None,
    ) -> LearnerState:
        """
        Fill skills missing from the snapshot with the mastery store's values.

        Skills already present in the snapshot win. Returns a new LearnerState;
        the caller's snapshot is not modified.
        """
        if mastery_repository is None:
            return learner_state

        user_id = learner_id or learner_state.learner_id
        stored = await mastery_repository.fetch_skill_mastery(user_id)
        missing = {k: v for k, v in stored.items() if k not in learner_state.skills}
        if not missing:
            return learner_state

        logger.debug(f"Hydrated {len(missing)} skills from mastery store for {user_id}")
        return learner_state.model_copy(update={"skills": {**missing, **learner_state.skills}})

    def analyze(self, learner_state: LearnerState, context: LearningContext) -> LearningAnalysis:
        recent = learner_state.recent_performance(self.config.analysis_window)
        skills = learner_state.skills

        average_mastery = (
            mean(s.mastery_probability for s in skills.values()) if skills else 0.5
        )
        velocities = self._skill_velocities(recent, skills)

        return LearningAnalysis(
            average_mastery=average_mastery,
            skill_velocities=velocities,
            learning_patterns=self._learning_patterns(recent, velocities),
            optimal_difficulty=self._adaptive_difficulty(average_mastery, context),
            engagement_trend=self._engagement_trend(recent),
            stress_trend=self._stress_trend(recent),
            time_efficiency=self._time_efficiency(recent),
            consistency_score=self._consistency(recent),
            recent_accuracy=mean(1.0 if r.correct else 0.0 for r in recent) if recent else 0.5,
            skills=dict(skills),
            skill_success_rates=self._skill_success_rates(recent),
        )

    # =========================================================================
    # Components
    # =========================================================================

    def _skill_velocities(
        self, recent: list[PerformanceRecord], skills: dict[str, SkillMastery]
    ) -> dict[str, float]:
        """Mean step-to-step change in correctness per skill (>= 3 attempts)."""
        velocities: dict[str, float] = {}
        for skill_id in skills:
            attempts = [1.0 if r.correct else 0.0 for r in recent if r.skill_id == skill_id]
            if len(attempts) < MIN_ATTEMPTS_FOR_VELOCITY:
                continue
            steps = [0.0] + [attempts[i] - attempts[i - 1] for i in range(1, len(attempts))]
            velocities[skill_id] = sum(steps) / len(steps)
        return velocities

    def _skill_success_rates(self, recent: list[PerformanceRecord]) -> dict[str, float]:
        totals: dict[str, list[int]] = {}
        for record in recent:
            bucket = totals.setdefault(record.skill_id, [0, 0])
            bucket[0] += 1 if record.correct else 0
            bucket[1] += 1
        return {skill: correct / total for skill, (correct, total) in totals.items()}

    def _learning_patterns(
        self, recent: list[PerformanceRecord], velocities: dict[str, float]
    ) -> list[str]:
        patterns: list[str] = []
        if not recent:
            return ["insufficient_data"]

        if velocities:
            avg_velocity = mean(velocities.values())
            if avg_velocity > 0.05:
                patterns.append("improving")
            elif avg_velocity < -0.05:
                patterns.append("declining")

        if self._consistency(recent) < 0.5:
            patterns.append("inconsistent")
        else:
            patterns.append("consistent")

        if mean(r.response_time_seconds for r in recent) <= EFFICIENT_RESPONSE_SECONDS / 2:
            patterns.append("fast_responder")
        if sum(1 for r in recent if r.hint_used) * 2 > len(recent):
            patterns.append("hint_dependent")
        return patterns

    def _adaptive_difficulty(self, average_mastery: float, context: LearningContext) -> float:
        stress_relief = 0.1 * max(0.0, context.stress_level - 0.5)
        return _clamp(average_mastery + self.config.zpd_stretch - stress_relief, 0.05, 0.95)

    def _engagement_trend(self, recent: list[PerformanceRecord]) -> float:
        """Confidence drift across the window; accuracy drift when confidence is absent."""
        first, second = _halves(recent)
        if not first or not second:
            return 0.0

        def level(records: list[PerformanceRecord]) -> float:
            confidences = [r.confidence for r in records if r.confidence is not None]
            if confidences:
                return mean(confidences)
            return mean(1.0 if r.correct else 0.0 for r in records)

        return _clamp(level(second) - level(first), -1.0, 1.0)

    def _stress_trend(self, recent: list[PerformanceRecord]) -> float:
        first, second = _halves(recent)
        if not first or not second:
            return 0.0

        def error_rate(records: list[PerformanceRecord]) -> float:
            return mean(0.0 if r.correct else 1.0 for r in records)

        return _clamp(error_rate(second) - error_rate(first), -1.0, 1.0)

    def _time_efficiency(self, recent: list[PerformanceRecord]) -> float:
        if not recent:
            return 0.5
        return mean(
            _clamp(EFFICIENT_RESPONSE_SECONDS / max(r.response_time_seconds, 1.0)) for r in recent
        )

    def _consistency(self, recent: list[PerformanceRecord]) -> float:
        """1 minus the rate of correct/incorrect flips between consecutive attempts."""
        if len(recent) < 2:
            return 0.5
        flips = sum(1 for a, b in zip(recent, recent[1:]) if a.correct != b.correct)
        return 1.0 - flips / (len(recent) - 1)
