"""
Question bank models.

Tables read by the recommendation engine:
- questions: question metadata, skill tags and usage telemetry
- skill_mastery: per-learner mastery snapshots written by the tracing updater
- question_attempts: per-learner attempt log used for novelty scoring

Array-valued columns use the generic JSON type so the same models run on
PostgreSQL and on SQLite in tests.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QuestionRow(Base):
    """Practice question with skill tags."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    subject: Mapped[str] = mapped_column(Text, default="math")  # math / reading / writing
    question_type: Mapped[str] = mapped_column(Text, default="multiple_choice")
    difficulty: Mapped[str] = mapped_column(Text, default="medium")  # easy / medium / hard
    question_text: Mapped[str] = mapped_column(Text, default="")

    primary_skill: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    secondary_skills: Mapped[list] = mapped_column(JSON, default=list)
    concepts: Mapped[list] = mapped_column(JSON, default=list)
    prerequisites: Mapped[list] = mapped_column(JSON, default=list)
    estimated_time_seconds: Mapped[int] = mapped_column(Integer, default=90)

    # Telemetry
    times_used: Mapped[int] = mapped_column(Integer, default=0)
    success_rate: Mapped[float | None] = mapped_column(Float)
    average_response_time: Mapped[float | None] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<QuestionRow {self.id} {self.primary_skill}/{self.difficulty}>"


class SkillMasteryRow(Base):
    """Mastery snapshot for one learner and skill."""

    __tablename__ = "skill_mastery"
    __table_args__ = (UniqueConstraint("user_id", "skill_id", name="uq_skill_mastery_user_skill"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    skill_id: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str | None] = mapped_column(Text)

    mastery_probability: Mapped[float] = mapped_column(Float, default=0.0)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column()

    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())


class QuestionAttemptRow(Base):
    """One answered question."""

    __tablename__ = "question_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    question_id: Mapped[str] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    response_time_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    answered_at: Mapped[datetime] = mapped_column(default=func.now())
