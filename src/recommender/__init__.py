"""
Adaptive question recommendation engine.

Selects an ordered, diversified set of practice questions inside a learner's
Zone of Proximal Development and adapts strategy weights from outcomes.
"""
from src.recommender.adaptation import AdaptationStore, OutcomeAdapter
from src.recommender.config import EngineConfig
from src.recommender.engine import AdaptiveRecommendationEngine
from src.recommender.exceptions import (
    InvalidRequestError,
    MasteryStoreError,
    QuestionStoreError,
    RecommenderError,
    RepositoryError,
)
from src.recommender.fallback import FallbackCache
from src.recommender.models import (
    LearnerProfile,
    LearnerState,
    LearningContext,
    PerformanceRecord,
    PersonalizedInsights,
    Question,
    QuestionOutcome,
    QuestionRecommendation,
    SkillMastery,
)
from src.recommender.repositories import (
    InMemoryMasteryRepository,
    InMemoryQuestionRepository,
    MasteryRepository,
    QuestionRepository,
)
from src.recommender.skill_graph import SkillGraph
from src.recommender.strategies import StrategyRegistry

__all__ = [
    # Engine
    "AdaptiveRecommendationEngine",
    "EngineConfig",
    "AdaptationStore",
    "OutcomeAdapter",
    "FallbackCache",
    "SkillGraph",
    "StrategyRegistry",
    # Models
    "LearnerProfile",
    "LearnerState",
    "LearningContext",
    "PerformanceRecord",
    "PersonalizedInsights",
    "Question",
    "QuestionOutcome",
    "QuestionRecommendation",
    "SkillMastery",
    # Repositories
    "QuestionRepository",
    "MasteryRepository",
    "InMemoryQuestionRepository",
    "InMemoryMasteryRepository",
    # Errors
    "RecommenderError",
    "InvalidRequestError",
    "RepositoryError",
    "QuestionStoreError",
    "MasteryStoreError",
]
