"""Fitness evaluation driver — bounded concurrent scoring of a population.

Only individuals without a cached fitness are sent to the evaluator, and
recently scored genomes are served from a bounded per-driver cache. Each
call gets a timeout and one retry; a call that still fails scores the
minimum. Results are applied once the whole batch has joined, so callers
never see a half-scored population.
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any

from pydantic import BaseModel, Field

from evoforge.config import settings
from evoforge.evolution.models import Individual
from evoforge.exceptions import EvaluationError, EvaluatorOutageError
from evoforge.genome.base import Genome, fingerprint

logger = logging.getLogger(__name__)


class Evaluation(BaseModel):
    """A score plus the artifact produced while scoring, if any."""

    score: float
    phenotype: Any = None


class FitnessEvaluator(ABC):
    """Scores genomes. Must be deterministic for identical genome content."""

    @abstractmethod
    async def evaluate(self, genome: Genome) -> float | Evaluation:
        """Return a score (or an Evaluation) for ``genome``."""


class EvaluationBatch(BaseModel):
    """Outcome of scoring one population."""

    population: list[Individual]
    evaluated: int = 0
    failed: int = 0
    cached: int = 0  # served from the per-driver genome cache
    failures: dict[str, str] = Field(default_factory=dict)  # individual id -> error


class FitnessDriver:
    """Runs a FitnessEvaluator over a population with bounded concurrency."""

    def __init__(
        self,
        evaluator: FitnessEvaluator,
        max_in_flight: int | None = None,
        timeout: float | None = None,
        score_min: float = 0.0,
        score_max: float = 1.0,
        retries: int = 1,
        use_cache: bool = True,
        cache_size: int | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._max_in_flight = max_in_flight or settings.max_concurrent_evaluations
        self._timeout = timeout or settings.evaluation_timeout_seconds
        self._score_min = score_min
        self._score_max = score_max
        self._retries = retries
        self._cache: OrderedDict[str, Evaluation] | None = OrderedDict() if use_cache else None
        self._cache_size = cache_size or settings.fitness_cache_size

    async def evaluate_population(self, population: list[Individual]) -> EvaluationBatch:
        """Score every unevaluated individual and return the updated population.

        Raises EvaluatorOutageError when every pending evaluation failed.
        """
        pending = [i for i, ind in enumerate(population) if ind.fitness is None]
        if not pending:
            return EvaluationBatch(population=list(population))

        sem = asyncio.Semaphore(self._max_in_flight)
        batch = EvaluationBatch(population=list(population))

        async def _score(ind: Individual) -> tuple[Evaluation | None, str]:
            async with sem:
                return await self._evaluate_with_retry(ind.genome)

        to_run: list[int] = []
        for i in pending:
            hit = self._cached(population[i].genome)
            if hit is not None:
                batch.population[i] = _apply(population[i], hit)
                batch.cached += 1
            else:
                to_run.append(i)

        results = await asyncio.gather(*[_score(population[i]) for i in to_run])

        for i, (evaluation, error) in zip(to_run, results):
            ind = population[i]
            if evaluation is None:
                batch.failed += 1
                batch.failures[ind.id] = error
                logger.warning(
                    "Evaluation of %s failed, scoring %s: %s", ind.id, self._score_min, error
                )
                batch.population[i] = _apply(ind, Evaluation(score=self._score_min))
            else:
                batch.evaluated += 1
                batch.population[i] = _apply(ind, evaluation)
                self._remember(ind.genome, evaluation)

        if to_run and batch.failed == len(to_run):
            raise EvaluatorOutageError(
                f"all {batch.failed} evaluations in the batch failed; "
                f"first error: {next(iter(batch.failures.values()))}"
            )
        return batch

    async def evaluate_genome(self, genome: Genome) -> Evaluation:
        """Score a single genome, raising EvaluationError on failure."""
        return await self._evaluate_once(genome)

    def _cached(self, genome: Genome) -> Evaluation | None:
        if self._cache is None:
            return None
        key = fingerprint(genome)
        hit = self._cache.get(key)
        if hit is not None:
            self._cache.move_to_end(key)
        return hit

    def _remember(self, genome: Genome, evaluation: Evaluation) -> None:
        """Keep the evaluation, evicting the least recently used beyond the cache size."""
        if self._cache is None:
            return
        key = fingerprint(genome)
        self._cache[key] = evaluation
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    @property
    def cached_genomes(self) -> int:
        return len(self._cache) if self._cache is not None else 0

    async def _evaluate_with_retry(self, genome: Genome) -> tuple[Evaluation | None, str]:
        error = ""
        for attempt in range(self._retries + 1):
            try:
                return await self._evaluate_once(genome), ""
            except EvaluationError as e:
                error = str(e)
                logger.debug("Evaluation attempt %d failed: %s", attempt + 1, error)
        return None, error

    async def _evaluate_once(self, genome: Genome) -> Evaluation:
        try:
            raw = await asyncio.wait_for(self._evaluator.evaluate(genome), timeout=self._timeout)
            evaluation = raw if isinstance(raw, Evaluation) else Evaluation(score=float(raw))
        except asyncio.TimeoutError as e:
            raise EvaluationError(f"evaluation timed out after {self._timeout}s") from e
        except EvaluationError:
            raise
        except Exception as e:
            raise EvaluationError(f"{type(e).__name__}: {e}") from e

        score = evaluation.score
        if not math.isfinite(score) or not self._score_min <= score <= self._score_max:
            raise EvaluationError(
                f"score {score} outside [{self._score_min}, {self._score_max}]"
            )
        return evaluation


def _apply(individual: Individual, evaluation: Evaluation) -> Individual:
    return individual.model_copy(update={
        "fitness": evaluation.score,
        "phenotype": evaluation.phenotype,
    })
