"""
Recommendation Engine Models.

Caller-facing snapshots (learner state, context, profile) are pydantic models
so malformed input fails at the boundary. Everything the engine builds per
call (priority areas, candidates, scored recommendations) is a plain
dataclass owned by that call.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# =============================================================================
# ENUMS
# =============================================================================


class Urgency(str, Enum):
    """How soon a priority area should be worked on."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {Urgency.LOW: 0, Urgency.MEDIUM: 1, Urgency.HIGH: 2}[self]


class PriorityType(str, Enum):
    """Which heuristic family produced a priority area."""

    SKILL = "skill"
    PREREQUISITE = "prerequisite"
    GOAL = "goal"


class DifficultyTier(str, Enum):
    """Difficulty tier as stored in the question bank."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def numeric(self) -> float:
        """Position of the tier on the 0-1 difficulty scale."""
        return DIFFICULTY_SCALE[self.value]


# Tier -> 0-1 difficulty
DIFFICULTY_SCALE = {"easy": 0.3, "medium": 0.6, "hard": 0.9}
UNKNOWN_DIFFICULTY = 0.5


def tier_to_difficulty(tier: str | None) -> float:
    """Convert a stored tier name to numeric difficulty (unknown -> 0.5)."""
    if tier is None:
        return UNKNOWN_DIFFICULTY
    return DIFFICULTY_SCALE.get(str(tier).lower(), UNKNOWN_DIFFICULTY)


class PrimaryFactor(str, Enum):
    """Dominant reason a question was recommended."""

    SKILL_GAP = "skill_gap"
    KNOWLEDGE_CONSOLIDATION = "knowledge_consolidation"
    DIFFICULTY_PROGRESSION = "difficulty_progression"
    TIME_OPTIMIZATION = "time_optimization"
    ENGAGEMENT_BOOST = "engagement_boost"


class FactorType(str, Enum):
    """Kind of evidence behind a reasoning factor."""

    MASTERY_LEVEL = "mastery_level"
    RECENT_PERFORMANCE = "recent_performance"
    TIME_PRESSURE = "time_pressure"
    STRESS_LEVEL = "stress_level"
    ENGAGEMENT = "engagement"
    PREREQUISITE = "prerequisite"


# =============================================================================
# CALLER-FACING SNAPSHOTS (pydantic)
# =============================================================================


class SkillMastery(BaseModel):
    """Per-skill mastery maintained by the upstream knowledge-tracing updater."""

    model_config = ConfigDict(frozen=True)

    skill_id: str = Field(min_length=1)
    mastery_probability: float = Field(ge=0.0, le=1.0)
    total_attempts: int = Field(default=0, ge=0)
    correct_attempts: int = Field(default=0, ge=0)
    last_attempt_at: Optional[datetime] = None
    subject: Optional[str] = None

    @model_validator(mode="after")
    def _check_attempts(self) -> "SkillMastery":
        if self.correct_attempts > self.total_attempts:
            raise ValueError(
                f"correct_attempts ({self.correct_attempts}) exceeds "
                f"total_attempts ({self.total_attempts}) for {self.skill_id}"
            )
        return self

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_attempts == 0:
            return None
        return self.correct_attempts / self.total_attempts


class PerformanceRecord(BaseModel):
    """One attempt in the learner's append-only performance log."""

    model_config = ConfigDict(frozen=True)

    skill_id: str
    correct: bool
    timestamp: datetime
    response_time_seconds: float = Field(default=60.0, ge=0.0)
    question_id: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    hint_used: bool = False


class LearnerState(BaseModel):
    """Snapshot of a learner borrowed for one recommendation call."""

    learner_id: str = Field(min_length=1)
    skills: dict[str, SkillMastery] = Field(default_factory=dict)
    performance_history: list[PerformanceRecord] = Field(default_factory=list)
    stress_level: float = Field(default=0.3, ge=0.0, le=1.0)
    engagement_level: float = Field(default=0.7, ge=0.0, le=1.0)
    confidence_level: float = Field(default=0.5, ge=0.0, le=1.0)

    def mastery_of(self, skill_id: str, default: float = 0.5) -> float:
        skill = self.skills.get(skill_id)
        return skill.mastery_probability if skill else default

    def recent_performance(self, window: int) -> list[PerformanceRecord]:
        return self.performance_history[-window:] if window > 0 else []

    @property
    def total_attempts(self) -> int:
        return sum(s.total_attempts for s in self.skills.values())


class LearningContext(BaseModel):
    """Constraints of the current study session."""

    session_type: Literal["practice", "test_prep", "diagnostic", "review"] = "practice"
    time_available_seconds: float = Field(default=1800.0, ge=0.0)
    current_goals: list[str] = Field(default_factory=list)
    stress_level: float = Field(default=0.3, ge=0.0, le=1.0)
    energy_level: float = Field(default=0.7, ge=0.0, le=1.0)


class PerformancePattern(BaseModel):
    """Longer-term trend observed for a group of skills."""

    pattern: Literal["improving", "declining", "stable", "fluctuating"]
    timeframe: str = "week"
    skills: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class LearnerProfile(BaseModel):
    """Learning preferences collected outside the engine."""

    learning_style: Literal["visual", "analytical", "methodical", "intuitive"] = "analytical"
    preferred_pace: Literal["fast", "moderate", "careful"] = "moderate"
    strength_areas: list[str] = Field(default_factory=list)
    struggling_areas: list[str] = Field(default_factory=list)
    motivation_factors: list[str] = Field(default_factory=list)
    attention_span_minutes: int = Field(default=25, ge=1)
    optimal_session_length_minutes: int = Field(default=30, ge=1)
    performance_patterns: list[PerformancePattern] = Field(default_factory=list)


# =============================================================================
# PER-CALL ANALYSIS RECORDS
# =============================================================================


@dataclass
class LearningAnalysis:
    """Normalized view of learner state used by strategy selection."""

    average_mastery: float
    skill_velocities: dict[str, float] = field(default_factory=dict)
    learning_patterns: list[str] = field(default_factory=list)
    optimal_difficulty: float = 0.5
    engagement_trend: float = 0.0  # -1 (dropping) .. 1 (rising)
    stress_trend: float = 0.0
    time_efficiency: float = 0.5
    consistency_score: float = 0.5
    recent_accuracy: float = 0.5
    skills: dict[str, SkillMastery] = field(default_factory=dict)
    # skill -> success rate over the recent window (skills seen recently only)
    skill_success_rates: dict[str, float] = field(default_factory=dict)

    def mastery_of(self, skill_id: str) -> Optional[float]:
        skill = self.skills.get(skill_id)
        return skill.mastery_probability if skill else None

    def success_rate_of(self, skill_id: str) -> Optional[float]:
        """Recent success rate, else the lifetime attempt ratio, else None."""
        if skill_id in self.skill_success_rates:
            return self.skill_success_rates[skill_id]
        skill = self.skills.get(skill_id)
        return skill.success_rate if skill else None


@dataclass
class ZPDData:
    """Personalized difficulty band."""

    lower_bound: float
    upper_bound: float
    optimal: float
    confidence: float
    tolerance: float = 0.15

    def contains(self, difficulty: float) -> bool:
        return self.lower_bound <= difficulty <= self.upper_bound


@dataclass
class PriorityArea:
    """Candidate focus area produced by one or more heuristics."""

    type: PriorityType
    identifier: str
    priority: float
    reasons: list[str]
    urgency: Urgency
    time_investment_minutes: float = 0.0
    prerequisites: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[PriorityType, str]:
        return (self.type, self.identifier)

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons)


# =============================================================================
# QUESTION STORE RECORDS
# =============================================================================


@dataclass(frozen=True)
class Question:
    """Question row as served by the external question store."""

    id: str
    primary_skill: str
    difficulty: str = "medium"  # easy / medium / hard
    subject: str = "math"
    question_type: str = "multiple_choice"
    secondary_skills: tuple[str, ...] = ()
    concepts: tuple[str, ...] = ()
    prerequisites: tuple[str, ...] = ()
    estimated_time_seconds: int = 90
    times_used: int = 0
    success_rate: Optional[float] = None
    average_response_time: Optional[float] = None
    question_text: str = ""

    @property
    def skills(self) -> list[str]:
        return [self.primary_skill, *self.secondary_skills]

    @property
    def difficulty_value(self) -> float:
        return tier_to_difficulty(self.difficulty)

    @property
    def concept_tags(self) -> list[str]:
        return list(self.concepts) if self.concepts else [self.primary_skill]


@dataclass
class UserQuestionAnalytics:
    """A learner's history with one question."""

    attempts: int = 0
    last_correct: Optional[bool] = None
    average_time: Optional[float] = None
    last_attempted: Optional[datetime] = None


@dataclass
class QuestionCandidate:
    """Question pulled into the candidate pool for one call."""

    question_id: str
    skills: list[str]
    concepts: list[str]
    difficulty: float
    estimated_time_seconds: int
    relevance_score: float
    question: Optional[Question] = None


# =============================================================================
# STRATEGIES
# =============================================================================


@dataclass(frozen=True)
class StrategyWeights:
    """Weight vector over the scoring factors."""

    mastery_priority: float
    difficulty_optimization: float
    time_constraints: float
    engagement_factor: float
    stress_consideration: float
    prerequisite_importance: float

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, float]) -> "StrategyWeights":
        return cls(**{f.name: float(data[f.name]) for f in fields(cls)})

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class RecommendationStrategy:
    """Named, immutable weighting of scoring factors."""

    name: str
    display_name: str
    description: str
    weights: StrategyWeights
    outcomes: tuple[str, ...] = ()
    stress_responsive: bool = False
    time_aware: bool = False


# =============================================================================
# SCORED RECOMMENDATIONS
# =============================================================================


@dataclass
class AdaptiveMetrics:
    """Sub-scores exposed alongside a recommendation."""

    mastery_gap: float = 0.0  # How much the question addresses skill gaps
    difficulty_fit: float = 0.0  # ZPD alignment
    prerequisite_met: float = 0.0
    learning_velocity: float = 0.0
    engagement_boost: float = 0.0
    time_efficiency: float = 0.0


@dataclass
class ExpectedOutcome:
    """Projection of what attempting the question should do for the learner."""

    mastery_improvement: dict[str, float] = field(default_factory=dict)
    confidence_boost: float = 0.0
    engagement_change: float = 0.0
    time_to_complete: float = 0.0
    success_probability: float = 0.5
    learning_gain: float = 0.0


@dataclass
class ReasoningFactor:
    type: FactorType
    weight: float
    value: float
    description: str

    @property
    def contribution(self) -> float:
        return self.weight * self.value


@dataclass
class RecommendationReasoning:
    """Why a question was recommended."""

    primary_factor: PrimaryFactor
    factors: list[ReasoningFactor]
    confidence: float
    adaptive_strategy: str
    zpd_alignment: float
    summary: str = ""
    zpd_summary: str = ""


@dataclass
class AlternativeQuestion:
    question_id: str
    reason: str
    priority: float
    difference: str


@dataclass
class QuestionRecommendation:
    """Externally visible recommendation unit."""

    question_id: str
    question: Question
    skills: list[str]
    concepts: list[str]
    difficulty: float
    estimated_time_seconds: int
    relevance_score: float
    priority: float
    reasoning: RecommendationReasoning
    adaptive_metrics: AdaptiveMetrics
    expected_outcome: ExpectedOutcome
    alternatives: list[AlternativeQuestion] = field(default_factory=list)
    user_analytics: Optional[UserQuestionAnalytics] = None

    @property
    def strategy_name(self) -> str:
        return self.reasoning.adaptive_strategy

    @property
    def primary_skill(self) -> str:
        return self.question.primary_skill

    @property
    def difficulty_level(self) -> str:
        return self.question.difficulty

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["reasoning"]["primary_factor"] = self.reasoning.primary_factor.value
        for factor in data["reasoning"]["factors"]:
            factor["type"] = factor["type"].value
        if self.user_analytics and self.user_analytics.last_attempted:
            data["user_analytics"]["last_attempted"] = self.user_analytics.last_attempted.isoformat()
        data["question"]["secondary_skills"] = list(self.question.secondary_skills)
        data["question"]["concepts"] = list(self.question.concepts)
        data["question"]["prerequisites"] = list(self.question.prerequisites)
        return data


# =============================================================================
# ADAPTATION RECORDS
# =============================================================================


@dataclass
class QuestionOutcome:
    """What actually happened when the learner attempted a recommendation."""

    correct: bool
    time_spent_seconds: float = 0.0
    confidence: float = 0.5
    engagement_level: float = 0.5
    mastery_improvement: dict[str, float] = field(default_factory=dict)
    hints_used: int = 0


@dataclass
class RecommendationRecord:
    """Audit trail entry driving weight adaptation."""

    recommendation: QuestionRecommendation
    actual_outcome: QuestionOutcome
    timestamp: datetime
    learner_id: str
    accuracy: float


@dataclass
class StrategyMetrics:
    total_recommendations: int = 0
    average_accuracy: float = 0.0


@dataclass
class PersonalizedInsights:
    """Summary of how well recommendations have fit one learner."""

    learner_id: str
    total_recommendations: int
    average_accuracy: float
    best_strategies: list[str] = field(default_factory=list)
    learning_patterns: list[str] = field(default_factory=list)
    # strategy name -> weights adapted for this learner
    personalized_weights: dict[str, StrategyWeights] = field(default_factory=dict)
    next_optimizations: list[str] = field(default_factory=list)
