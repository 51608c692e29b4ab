"""
Typer CLI for the adaptive question recommender.

Commands:
    recommend    - Recommend questions for a learner snapshot
    strategies   - List registered recommendation strategies
    db init      - Initialize question bank tables

Usage:
    python main.py recommend --learner learner.json --catalog catalog.json --count 5
    python main.py recommend --learner learner.json --source db
    python main.py strategies
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import Settings, get_settings
from src.recommender import (
    AdaptiveRecommendationEngine,
    EngineConfig,
    InMemoryQuestionRepository,
    InvalidRequestError,
    LearnerProfile,
    LearnerState,
    LearningContext,
    Question,
    QuestionRecommendation,
    StrategyRegistry,
)

app = typer.Typer(
    help="Adaptive question recommender: ZPD-aware practice question selection",
    no_args_is_help=True,
)
db_app = typer.Typer(help="Question bank database commands")
app.add_typer(db_app, name="db")

console = Console()


def configure_logging(settings: Settings, verbose: bool = False) -> None:
    """Route loguru output according to settings."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB")


# ========================================
# Input loading
# ========================================


def load_catalog(path: Path) -> list[Question]:
    """Read questions from a JSON file (a list, or {"questions": [...]})."""
    data = json.loads(path.read_text(encoding="utf-8"))
    rows = data.get("questions", []) if isinstance(data, dict) else data
    questions = []
    for row in rows:
        for key in ("secondary_skills", "concepts", "prerequisites"):
            row[key] = tuple(row.get(key) or ())
        questions.append(Question(**row))
    return questions


def _expand_skills(skills: Any) -> dict[str, dict[str, Any]]:
    """Allow {"skill": 0.4} shorthand next to full SkillMastery objects."""
    if isinstance(skills, list):
        return {s["skill_id"]: s for s in skills}
    expanded = {}
    for skill_id, value in (skills or {}).items():
        if isinstance(value, (int, float)):
            expanded[skill_id] = {"skill_id": skill_id, "mastery_probability": value}
        else:
            expanded[skill_id] = {"skill_id": skill_id, **value}
    return expanded


def load_learner(path: Path) -> tuple[LearnerState, LearningContext, LearnerProfile]:
    """Read a learner snapshot with optional "context" and "profile" sections."""
    data = json.loads(path.read_text(encoding="utf-8"))
    context = LearningContext.model_validate(data.pop("context", {}))
    profile = LearnerProfile.model_validate(data.pop("profile", {}))
    data["skills"] = _expand_skills(data.get("skills"))
    return LearnerState.model_validate(data), context, profile


def build_engine(settings: Settings, source: str, catalog: Optional[Path]) -> AdaptiveRecommendationEngine:
    config = EngineConfig.from_settings(settings)

    if source == "catalog":
        if catalog is None:
            raise typer.BadParameter("--catalog is required when --source is catalog")
        return AdaptiveRecommendationEngine(InMemoryQuestionRepository(load_catalog(catalog)), config=config)

    if source == "api":
        if not settings.has_question_api_configured():
            raise typer.BadParameter("QUESTION_API_URL is not configured")
        from src.integrations.question_api_client import QuestionApiClient

        client = QuestionApiClient.from_settings(settings)
        return AdaptiveRecommendationEngine(client, mastery_repository=client, config=config)

    if source == "db":
        from src.db.repositories import SqlMasteryRepository, SqlQuestionRepository

        return AdaptiveRecommendationEngine(
            SqlQuestionRepository(), mastery_repository=SqlMasteryRepository(), config=config
        )

    raise typer.BadParameter(f"Unknown source '{source}' (expected catalog, db or api)")


def render_recommendations(recommendations: list[QuestionRecommendation]) -> None:
    table = Table(title="Recommended Questions")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Question", style="cyan")
    table.add_column("Skill")
    table.add_column("Tier")
    table.add_column("Score", justify="right")
    table.add_column("Strategy", style="magenta")
    table.add_column("Why")

    for i, rec in enumerate(recommendations, 1):
        table.add_row(
            str(i),
            rec.question_id,
            rec.primary_skill,
            rec.difficulty_level,
            f"{rec.priority:.2f}",
            rec.strategy_name,
            rec.reasoning.summary or rec.reasoning.primary_factor.value,
        )
    console.print(table)


# ========================================
# Commands
# ========================================


@app.command()
def recommend(
    learner: Path = typer.Option(..., "--learner", "-l", exists=True, help="Learner snapshot JSON"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", "-c", exists=True, help="Question catalog JSON"),
    count: int = typer.Option(5, "--count", "-n", help="Number of recommendations"),
    source: str = typer.Option("catalog", "--source", "-s", help="Question source: catalog, db or api"),
    as_json: bool = typer.Option(False, "--json", help="Print recommendations as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Recommend practice questions for a learner."""
    settings = get_settings()
    configure_logging(settings, verbose)

    state, context, profile = load_learner(learner)
    engine = build_engine(settings, source, catalog)

    async def _run() -> list[QuestionRecommendation]:
        try:
            return await engine.generate_recommendations(state, context, profile, count=count)
        finally:
            close = getattr(engine.question_repository, "close", None)
            if close is not None:
                await close()

    try:
        recommendations = asyncio.run(_run())
    except InvalidRequestError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in recommendations], indent=2, default=str))
        return

    if not recommendations:
        rprint("[yellow]No recommendations available[/yellow]")
        return
    render_recommendations(recommendations)


@app.command()
def strategies() -> None:
    """List registered recommendation strategies and their weights."""
    table = Table(title="Recommendation Strategies")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Mastery", justify="right")
    table.add_column("Difficulty", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Engagement", justify="right")
    table.add_column("Stress", justify="right")
    table.add_column("Prereq", justify="right")

    for strategy in StrategyRegistry():
        w = strategy.weights
        table.add_row(
            strategy.name,
            strategy.description,
            f"{w.mastery_priority:.2f}",
            f"{w.difficulty_optimization:.2f}",
            f"{w.time_constraints:.2f}",
            f"{w.engagement_factor:.2f}",
            f"{w.stress_consideration:.2f}",
            f"{w.prerequisite_importance:.2f}",
        )
    console.print(table)


@db_app.command("init")
def db_init() -> None:
    """
    Initialize question bank tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    configure_logging(get_settings())
    from src.db.database import init_db

    init_db()
    rprint("[green]✓[/green] Database initialized!")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
