"""
Zone of Proximal Development calculator.

The optimal difficulty sits a fixed stretch above the learner's effective
mastery. When several skills are involved, effective mastery leans toward
the weakest one. Candidates outside the band are penalized smoothly by
difficulty_fit(), never rejected.
"""
from __future__ import annotations

import math
from statistics import mean
from typing import Optional, Sequence

from src.recommender.config import EngineConfig
from src.recommender.models import LearnerProfile, LearnerState, ZPDData

MIN_DIFFICULTY = 0.05
MAX_DIFFICULTY = 0.95

PACE_SHIFT = {"fast": 0.05, "moderate": 0.0, "careful": -0.05}
PATTERN_SHIFT = {"improving": 0.03, "declining": -0.03}

# Effective mastery = MEAN_WEIGHT * mean + (1 - MEAN_WEIGHT) * min
MEAN_WEIGHT = 0.3
CONFIDENCE_ATTEMPT_SCALE = 20.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def zpd_alignment(difficulty: float, optimal: float) -> float:
    return _clamp(1.0 - abs(difficulty - optimal))


def difficulty_fit(difficulty: float, optimal: float, tolerance: float) -> float:
    """
    Difficulty sub-score.

    Inside the tolerance band this is the plain alignment. Outside it the
    alignment decays exponentially with the distance past the band edge,
    so the score is monotone non-increasing in |difficulty - optimal|.
    """
    alignment = zpd_alignment(difficulty, optimal)
    distance = abs(difficulty - optimal)
    if distance <= tolerance or tolerance <= 0:
        return alignment
    return alignment * math.exp(-(distance - tolerance) / tolerance)


class ZPDCalculator:
    """Computes the personalized difficulty band."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def effective_mastery(self, learner_state: LearnerState, skills: Sequence[str]) -> float:
        if not skills:
            skills = list(learner_state.skills)
        if not skills:
            return 0.5

        masteries = [learner_state.mastery_of(s) for s in skills]
        if len(masteries) == 1:
            return masteries[0]
        return MEAN_WEIGHT * mean(masteries) + (1 - MEAN_WEIGHT) * min(masteries)

    def calculate_optimal_difficulty(
        self, learner_state: LearnerState, skills: Sequence[str] = ()
    ) -> float:
        """Effective mastery plus the stretch, clamped to [0.05, 0.95]."""
        mastery = self.effective_mastery(learner_state, skills)
        return _clamp(mastery + self.config.zpd_stretch, MIN_DIFFICULTY, MAX_DIFFICULTY)

    def calculate_optimal_zone(
        self, learner_state: LearnerState, profile: LearnerProfile
    ) -> ZPDData:
        optimal = self.calculate_optimal_difficulty(learner_state)
        optimal += PACE_SHIFT.get(profile.preferred_pace, 0.0)

        observed = {p.pattern for p in profile.performance_patterns}
        for pattern, shift in PATTERN_SHIFT.items():
            if pattern in observed:
                optimal += shift
        optimal = _clamp(optimal, MIN_DIFFICULTY, MAX_DIFFICULTY)

        tolerance = self.config.zpd_tolerance
        attempts = max(learner_state.total_attempts, len(learner_state.performance_history))
        confidence = max(0.1, 0.95 * (1.0 - math.exp(-attempts / CONFIDENCE_ATTEMPT_SCALE)))

        return ZPDData(
            lower_bound=_clamp(optimal - tolerance),
            upper_bound=_clamp(optimal + tolerance),
            optimal=optimal,
            confidence=confidence,
            tolerance=tolerance,
        )
