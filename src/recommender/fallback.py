"""
Fallback recommendation sets.

Keeps the last successful recommendation list per learner so a degraded
call (store outage, deadline exceeded, empty pipeline) can still answer.
"""
from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Optional

from src.recommender.models import QuestionRecommendation


class FallbackCache:
    """Bounded LRU of last-good recommendation lists keyed by learner."""

    def __init__(self, max_learners: int = 10000):
        self.max_learners = max_learners
        self._lock = threading.Lock()
        self._sets: OrderedDict[str, list[QuestionRecommendation]] = OrderedDict()

    def store(self, learner_id: str, recommendations: list[QuestionRecommendation]) -> None:
        if not recommendations:
            return
        with self._lock:
            self._sets[learner_id] = list(recommendations)
            self._sets.move_to_end(learner_id)
            while len(self._sets) > self.max_learners:
                self._sets.popitem(last=False)

    def get(self, learner_id: str, count: Optional[int] = None) -> list[QuestionRecommendation]:
        with self._lock:
            cached = self._sets.get(learner_id)
            if cached is None:
                return []
            self._sets.move_to_end(learner_id)
            return list(cached[:count] if count is not None else cached)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sets)
