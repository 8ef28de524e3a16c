"""Shared test fixtures — deterministic fake evaluators and genome helpers."""

from __future__ import annotations

import asyncio

import pytest

from evoforge.evolution.fitness import Evaluation, FitnessEvaluator
from evoforge.evolution.models import Individual
from evoforge.genome.base import Genome
from evoforge.genome.dsl import DslGenome, DslGenomeFactory, DslOps, DslTemplate
from evoforge.genome.vector import VectorGenome, VectorGenomeFactory, VectorOps, VectorTemplate


class MeanGeneEvaluator(FitnessEvaluator):
    """Score = mean gene value. Deterministic, counts its calls."""

    def __init__(self, delay: float = 0.0):
        self._delay = delay
        self.calls = 0

    async def evaluate(self, genome: Genome) -> float:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return sum(genome.genes) / len(genome.genes)


class TargetEvaluator(FitnessEvaluator):
    """Score = 1 - mean distance of the genes to a target value."""

    def __init__(self, target: float = 0.7, delay: float = 0.0):
        self._target = target
        self._delay = delay

    async def evaluate(self, genome: Genome) -> float:
        if self._delay:
            await asyncio.sleep(self._delay)
        return 1.0 - sum(abs(g - self._target) for g in genome.genes) / len(genome.genes)


class FlakyEvaluator(FitnessEvaluator):
    """Fails the first attempt for every genome, then scores like MeanGeneEvaluator."""

    def __init__(self):
        self._seen: set[tuple[float, ...]] = set()
        self.calls = 0

    async def evaluate(self, genome: Genome) -> float:
        self.calls += 1
        if genome.genes not in self._seen:
            self._seen.add(genome.genes)
            raise RuntimeError("transient failure")
        return sum(genome.genes) / len(genome.genes)


class BrokenEvaluator(FitnessEvaluator):
    """Succeeds for the first ``healthy_calls`` calls, then always raises."""

    def __init__(self, healthy_calls: int = 0):
        self._healthy_calls = healthy_calls
        self.calls = 0

    async def evaluate(self, genome: Genome) -> float:
        self.calls += 1
        if self.calls > self._healthy_calls:
            raise ConnectionError("evaluator backend unreachable")
        return sum(genome.genes) / len(genome.genes)


class ConcurrencyProbe(FitnessEvaluator):
    """Records the highest number of evaluations in flight at once."""

    def __init__(self, delay: float = 0.01):
        self._delay = delay
        self._in_flight = 0
        self.peak = 0

    async def evaluate(self, genome: Genome) -> float:
        self._in_flight += 1
        self.peak = max(self.peak, self._in_flight)
        await asyncio.sleep(self._delay)
        self._in_flight -= 1
        return 0.5


class EntityCountEvaluator(FitnessEvaluator):
    """Scores DSL designs by entity count against the template maximum."""

    def __init__(self, max_entities: int = 8):
        self._max = max_entities

    async def evaluate(self, genome: Genome) -> Evaluation:
        assert isinstance(genome, DslGenome)
        return Evaluation(
            score=min(1.0, len(genome.entities) / self._max),
            phenotype={"entities": genome.entity_names()},
        )


@pytest.fixture
def vector_factory():
    return VectorGenomeFactory()


@pytest.fixture
def vector_ops():
    return VectorOps(lower=0.0, upper=1.0, sigma=0.1)


@pytest.fixture
def vector_template():
    return VectorTemplate(length=8)


@pytest.fixture
def dsl_template():
    return DslTemplate(min_entities=2, max_entities=6, max_attributes=3)


@pytest.fixture
def dsl_factory():
    return DslGenomeFactory()


@pytest.fixture
def dsl_ops(dsl_template):
    return DslOps(dsl_template)


@pytest.fixture
def mean_evaluator():
    return MeanGeneEvaluator()


@pytest.fixture
def make_individual():
    """Build a vector individual from gene values."""
    def _factory(genes, fitness=None, **kwargs) -> Individual:
        return Individual(genome=VectorGenome(genes=tuple(genes)), fitness=fitness, **kwargs)
    return _factory


@pytest.fixture
def scored_population(make_individual):
    """Population of ``size`` distinct vectors with fitness rising by index."""
    def _factory(size: int, length: int = 4) -> list[Individual]:
        return [
            make_individual([i / size] * length, fitness=i / size)
            for i in range(size)
        ]
    return _factory
