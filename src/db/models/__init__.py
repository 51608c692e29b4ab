# SQLAlchemy models
from .base import Base
from .question_bank import QuestionAttemptRow, QuestionRow, SkillMasteryRow

__all__ = [
    # Base
    "Base",
    # Question bank
    "QuestionRow",
    "SkillMasteryRow",
    "QuestionAttemptRow",
]
