"""
Engine tuning parameters.

EngineConfig mirrors the rec_* settings so components can be built with
explicit values in tests and from environment settings in production.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from config import Settings, get_settings

# Mastery thresholds shared by the heuristics
KNOWLEDGE_GAP_THRESHOLD = 0.7
HIGH_URGENCY_MASTERY = 0.4
GOAL_MASTERY_TARGET = 0.8
PREREQUISITE_MASTERY = 0.7
RELEVANCE_LOW_MASTERY = 0.6

DEFAULT_SKILLS = ["algebra_linear", "reading_inference", "writing_grammar"]


@dataclass
class EngineConfig:
    """Configuration for the recommendation pipeline."""

    max_recommendations: int = 5
    max_priority_skills: int = 10
    questions_per_bucket: int = 5
    max_candidates: int = 20
    default_skills: list[str] = field(default_factory=lambda: list(DEFAULT_SKILLS))
    zpd_tolerance: float = 0.15
    zpd_stretch: float = 0.10
    diversity_threshold: float = 0.5
    high_priority_threshold: float = 0.7
    tie_break_margin: float = 0.1
    adaptation_rate: float = 0.1
    history_retention: int = 200
    max_tracked_learners: int = 10000
    timeout_seconds: float = 5.0
    analysis_window: int = 10
    struggle_window: int = 15

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EngineConfig":
        """Build from application settings (cached settings by default)."""
        settings = settings or get_settings()
        return cls(**settings.get_recommender_config())
