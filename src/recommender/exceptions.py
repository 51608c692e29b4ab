"""
Recommender error taxonomy.

- InvalidRequestError: caller misuse (bad count, missing learner state).
  Raised immediately.
- RepositoryError: an external store failed. Never reaches the caller of
  generate_recommendations; the engine falls back instead.
"""
from __future__ import annotations


class RecommenderError(Exception):
    """Base class for recommendation engine errors."""


class InvalidRequestError(RecommenderError, ValueError):
    """Raised when a recommendation request is malformed."""


class RepositoryError(RecommenderError):
    """An external data store could not serve a request."""

    def __init__(self, message: str, dependency: str = "unknown"):
        super().__init__(message)
        self.dependency = dependency


class QuestionStoreError(RepositoryError):
    """Question store unavailable or returned an unusable response."""

    def __init__(self, message: str):
        super().__init__(message, dependency="question_store")


class MasteryStoreError(RepositoryError):
    """Skill mastery store unavailable or returned an unusable response."""

    def __init__(self, message: str):
        super().__init__(message, dependency="mastery_store")
