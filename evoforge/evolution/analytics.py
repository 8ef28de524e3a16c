"""Run analytics: derived figures for reports and dashboards.

None of these feed back into the evolution loop; the controller only
reads the current generation's statistics.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from evoforge.evolution.models import EvolutionRun, GenerationSnapshot, Individual
from evoforge.types import DiversityTrend, RunStatus, TerminationReason


def convergence_rate(run: EvolutionRun) -> float:
    """How close the best fitness is to the threshold, in [0, 1]."""
    if run.best_fitness is None:
        return 0.0
    cfg = run.config
    span = cfg.fitness_threshold - cfg.score_min
    if span <= 0:
        return 1.0
    return min(1.0, max(0.0, (run.best_fitness - cfg.score_min) / span))


def improvement_rate(history: list[GenerationSnapshot]) -> float:
    """(final best - initial best) / initial best; the final best when the start was 0."""
    if len(history) < 2:
        return 0.0
    first = history[0].best_fitness
    last = history[-1].best_fitness
    if first > 0:
        return (last - first) / first
    return last


def diversity_trend(values: list[float], tolerance: float = 0.005) -> DiversityTrend:
    """Direction of the least-squares slope through a diversity series."""
    n = len(values)
    if n < 2:
        return DiversityTrend.STABLE
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    num = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(values))
    den = sum((i - mean_x) ** 2 for i in range(n))
    slope = num / den
    if slope > tolerance:
        return DiversityTrend.INCREASING
    if slope < -tolerance:
        return DiversityTrend.DECREASING
    return DiversityTrend.STABLE


def estimated_completion(run: EvolutionRun, now: datetime | None = None) -> datetime | None:
    """When the generation limit will be spent at the observed pace."""
    if run.is_finished:
        return run.finished_at
    timed = [s.duration_ms for s in run.generation_history if s.duration_ms > 0]
    if not timed:
        return None
    now = now or datetime.utcnow()
    remaining = max(0, run.config.max_generations - run.current_generation)
    per_generation_ms = sum(timed) / len(timed)
    return now + timedelta(milliseconds=per_generation_ms * remaining)


def survival_probability(
    individual: Individual,
    score_min: float = 0.0,
    score_max: float = 1.0,
    age_decay: float = 0.1,
) -> float:
    """Normalized fitness discounted by age: fit and young survives."""
    if individual.fitness is None:
        return 0.0
    normalized = (individual.fitness - score_min) / (score_max - score_min)
    return min(1.0, max(0.0, normalized)) * math.exp(-age_decay * individual.age)


class RunSummary(BaseModel):
    """Final report of one run, as stored by history sinks."""

    run_id: str
    status: RunStatus
    generations: int
    best_fitness: float | None = None
    average_fitness: float | None = None
    diversity_score: float | None = None
    convergence_rate: float = 0.0
    improvement_rate: float = 0.0
    diversity_trend: DiversityTrend = DiversityTrend.STABLE
    low_diversity_generations: int = 0
    termination_reason: TerminationReason | None = None
    cancelled: bool = False
    error: str = ""
    best_individual_id: str = ""
    started_at: datetime
    finished_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


def summarize(run: EvolutionRun) -> RunSummary:
    history = run.generation_history
    return RunSummary(
        run_id=run.id,
        status=run.status,
        generations=run.current_generation,
        best_fitness=run.best_fitness,
        average_fitness=run.average_fitness,
        diversity_score=run.diversity_score,
        convergence_rate=convergence_rate(run),
        improvement_rate=improvement_rate(history),
        diversity_trend=diversity_trend([s.diversity for s in history]),
        low_diversity_generations=sum(1 for s in history if s.low_diversity),
        termination_reason=run.termination_reason,
        cancelled=run.cancelled,
        error=run.error,
        best_individual_id=run.best_individual.id if run.best_individual else "",
        started_at=run.started_at,
        finished_at=run.finished_at,
    )
