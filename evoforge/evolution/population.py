"""Population manager: initial generation, diversity and replacement."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from typing import Any

from evoforge.config import settings
from evoforge.evolution.models import Individual
from evoforge.exceptions import ConfigurationError, PopulationSizeInvariantViolation
from evoforge.genome.base import GenomeFactory, GenomeOps, fingerprint

logger = logging.getLogger(__name__)


class PopulationManager:
    """Builds and replaces fixed-size populations for one run."""

    def __init__(
        self,
        factory: GenomeFactory,
        ops: GenomeOps,
        population_size: int | None = None,
        max_in_flight: int | None = None,
    ) -> None:
        self._factory = factory
        self._ops = ops
        self._population_size = population_size
        self._max_in_flight = max_in_flight or settings.max_concurrent_evaluations

    async def initialize(
        self, size: int, genome_template: Any, rng: random.Random
    ) -> list[Individual]:
        """Request ``size`` random genomes concurrently and wrap them as generation 0.

        Seeds for every task are drawn up front so the result does not
        depend on completion order.
        """
        if size < 1:
            raise ConfigurationError(f"population size must be at least 1, got {size}")

        seeds = [rng.getrandbits(64) for _ in range(size)]
        sem = asyncio.Semaphore(self._max_in_flight)

        async def _one(seed: int) -> Individual:
            async with sem:
                genome = await self._factory.random(genome_template, random.Random(seed))
            self._ops.check(genome)
            return Individual(genome=genome)

        population = await asyncio.gather(*[_one(s) for s in seeds])
        logger.debug("Initialized population of %d '%s' genomes", size, self._ops.family)
        return list(population)

    def diversity(self, population: list[Individual]) -> float:
        """Mean pairwise genome distance, 0 when all genomes are identical.

        Identical genomes are grouped by fingerprint so each distinct pair
        is measured once.
        """
        n = len(population)
        if n < 2:
            return 0.0

        groups: dict[str, Individual] = {}
        counts: Counter[str] = Counter()
        for ind in population:
            key = fingerprint(ind.genome)
            groups.setdefault(key, ind)
            counts[key] += 1

        keys = list(groups)
        total = 0.0
        for i, ka in enumerate(keys):
            for kb in keys[i + 1:]:
                d = self._ops.distance(groups[ka].genome, groups[kb].genome)
                total += counts[ka] * counts[kb] * d

        pairs = n * (n - 1) / 2
        return min(1.0, max(0.0, total / pairs))

    def diversity_contribution(
        self, individual: Individual, population: list[Individual]
    ) -> float:
        """Mean distance from one individual to every other member."""
        others = [ind for ind in population if ind.id != individual.id]
        if not others:
            return 0.0
        total = sum(self._ops.distance(individual.genome, o.genome) for o in others)
        return total / len(others)

    def replace(
        self, old: list[Individual], new_individuals: list[Individual]
    ) -> list[Individual]:
        """Swap in the next generation. The size must not drift."""
        expected = self._population_size if self._population_size is not None else len(old)
        if len(new_individuals) != expected:
            raise PopulationSizeInvariantViolation(
                f"next generation has {len(new_individuals)} individuals, expected {expected}"
            )
        return list(new_individuals)


def fitness_stats(population: list[Individual]) -> tuple[float, float, float]:
    """(best, average, worst) over evaluated individuals."""
    scores = [ind.fitness for ind in population if ind.fitness is not None]
    if not scores:
        raise ValueError("population has no evaluated individuals")
    return max(scores), sum(scores) / len(scores), min(scores)
