"""
External integrations.

Modules:
- question_api_client: REST client for a remote question store
"""
from .question_api_client import QuestionApiClient

__all__ = ["QuestionApiClient"]
