"""
Skill dependency graph and goal keyword map.

SkillGraph is an explicit adjacency structure: skill -> direct prerequisites.
The reverse index (prerequisite -> dependents) is built once so that
prerequisite-gap detection can count how many skills a weak prerequisite
is blocking.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Mapping, Optional

# Direct prerequisites per skill
DEFAULT_DEPENDENCIES: dict[str, list[str]] = {
    "algebra_quadratic": ["algebra_linear", "arithmetic"],
    "geometry_coordinate": ["algebra_linear", "geometry_basic"],
    "statistics_advanced": ["statistics_basic", "algebra_linear"],
}

# Goal keyword -> skills it implies
DEFAULT_GOAL_KEYWORDS: dict[str, list[str]] = {
    "algebra": ["algebra_linear", "algebra_quadratic"],
    "linear": ["algebra_linear"],
    "quadratic": ["algebra_quadratic"],
    "geometry": ["geometry_basic", "geometry_coordinate"],
    "statistics": ["statistics_basic", "statistics_advanced"],
    "arithmetic": ["arithmetic"],
    "math": ["arithmetic", "algebra_linear", "geometry_basic"],
    "reading": ["reading_inference"],
    "inference": ["reading_inference"],
    "writing": ["writing_grammar"],
    "grammar": ["writing_grammar"],
}


class SkillGraph:
    """Skill prerequisite adjacency plus goal-to-skill keyword lookup."""

    def __init__(
        self,
        dependencies: Optional[Mapping[str, Iterable[str]]] = None,
        goal_keywords: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        deps = DEFAULT_DEPENDENCIES if dependencies is None else dependencies
        goals = DEFAULT_GOAL_KEYWORDS if goal_keywords is None else goal_keywords

        self._prerequisites: dict[str, list[str]] = {
            skill: list(prereqs) for skill, prereqs in deps.items()
        }
        self._dependents: dict[str, list[str]] = defaultdict(list)
        for skill, prereqs in self._prerequisites.items():
            for prereq in prereqs:
                self._dependents[prereq].append(skill)

        self._goal_keywords = {k.lower(): list(v) for k, v in goals.items()}

    def prerequisites_of(self, skill_id: str) -> list[str]:
        return list(self._prerequisites.get(skill_id, []))

    def dependents_of(self, skill_id: str) -> list[str]:
        return list(self._dependents.get(skill_id, []))

    def skills_with_prerequisites(self) -> list[str]:
        return list(self._prerequisites)

    def skills_for_goal(self, goal: str) -> list[str]:
        """
        Map a free-text goal to skills.

        A goal naming a skill id directly maps to that skill; otherwise every
        keyword found in the goal text contributes its skills. Order follows
        keyword order in the goal, duplicates removed.
        """
        text = goal.strip().lower()
        if not text:
            return []
        if text in self._prerequisites or text in self._dependents:
            return [text]

        skills: list[str] = []
        for token in text.replace("-", " ").replace("_", " ").split():
            for skill in self._goal_keywords.get(token, []):
                if skill not in skills:
                    skills.append(skill)
        return skills
