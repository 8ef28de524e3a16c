"""Real-valued vector genomes.

A fixed-length tuple of floats inside ``[lower, upper]``. Each gene is a
unit; mutation is a clamped gaussian nudge. The length is part of the
shape, so vectors of different lengths never cross over.
"""

from __future__ import annotations

import random
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from evoforge.genome.base import Genome, GenomeFactory, GenomeOps, Unit


class VectorGenome(Genome):
    family: Literal["vector"] = "vector"
    genes: tuple[float, ...]


class VectorTemplate(BaseModel):
    """What a random vector genome should look like."""

    length: int = Field(default=10, ge=1)
    lower: float = 0.0
    upper: float = 1.0

    @model_validator(mode="after")
    def _check_bounds(self) -> VectorTemplate:
        if self.lower >= self.upper:
            raise ValueError("lower bound must be below upper bound")
        return self


class VectorGenomeFactory(GenomeFactory):
    """Uniform random genes within the template bounds."""

    async def random(self, template: VectorTemplate | None, rng: random.Random) -> VectorGenome:
        template = template or VectorTemplate()
        return VectorGenome(
            genes=tuple(rng.uniform(template.lower, template.upper) for _ in range(template.length))
        )


class VectorOps(GenomeOps):
    family = "vector"

    def __init__(self, lower: float = 0.0, upper: float = 1.0, sigma: float = 0.1) -> None:
        if lower >= upper:
            raise ValueError("lower bound must be below upper bound")
        self._lower = lower
        self._upper = upper
        self._sigma = sigma

    def units(self, genome: VectorGenome) -> list[Unit]:
        return list(genome.genes)

    def rebuild(self, genome: VectorGenome, units: list[Unit]) -> VectorGenome:
        return VectorGenome(genes=tuple(float(u) for u in units))

    def mutate_unit(self, unit: float, rng: random.Random) -> float:
        span = self._upper - self._lower
        value = unit + rng.gauss(0.0, self._sigma * span)
        return min(self._upper, max(self._lower, value))

    def shape(self, genome: VectorGenome) -> tuple:
        return (genome.family, ("genes",), len(genome.genes))

    def distance(self, a: VectorGenome, b: VectorGenome) -> float:
        if len(a.genes) != len(b.genes):
            return 1.0
        if not a.genes:
            return 0.0
        span = self._upper - self._lower
        total = sum(abs(x - y) for x, y in zip(a.genes, b.genes))
        return min(1.0, total / (span * len(a.genes)))
