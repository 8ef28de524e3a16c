"""Genome families — the structured payloads the engine evolves.

Every family is a frozen pydantic model tagged by a ``family`` literal,
plus a ``GenomeOps`` strategy that knows how to split the genome into
units, perturb a unit, combine two units and measure distance. The
engine itself never looks inside a genome; it only calls these hooks.
"""

from __future__ import annotations

import hashlib
import random
from abc import ABC, abstractmethod
from itertools import zip_longest
from typing import Any

from pydantic import BaseModel

from evoforge.exceptions import MalformedGenomeError

Unit = Any


class Genome(BaseModel):
    """Base for all genome variants. Subclasses pin ``family`` to a Literal."""

    family: str

    model_config = {"frozen": True}


def fingerprint(genome: Genome) -> str:
    """Stable content hash, used wherever a genome needs to be a dict key."""
    return hashlib.sha1(genome.model_dump_json().encode("utf-8")).hexdigest()


class GenomeFactory(ABC):
    """Produces random genomes for a caller-supplied template."""

    @abstractmethod
    async def random(self, template: Any, rng: random.Random) -> Genome:
        """Return a fresh random genome shaped by ``template``."""


class GenomeOps(ABC):
    """Family-specific operator hooks injected into the engine.

    A unit is the smallest piece of a genome that mutates or crosses over
    independently: a gene, an entity, a relationship.
    """

    family: str = ""

    @abstractmethod
    def units(self, genome: Genome) -> list[Unit]:
        """Split a genome into its ordered units."""

    @abstractmethod
    def rebuild(self, genome: Genome, units: list[Unit]) -> Genome:
        """Build a genome like ``genome`` but holding ``units``."""

    @abstractmethod
    def mutate_unit(self, unit: Unit, rng: random.Random) -> Unit:
        """Return a perturbed copy of one unit."""

    @abstractmethod
    def distance(self, a: Genome, b: Genome) -> float:
        """Dissimilarity in [0, 1]; 0 for structurally equal genomes."""

    def combine_unit(self, a: Unit, b: Unit, rng: random.Random) -> Unit:
        """Uniform crossover of one unit: either parent's value, 50/50."""
        return a if rng.random() < 0.5 else b

    def align(
        self, units_a: list[Unit], units_b: list[Unit]
    ) -> list[tuple[Unit | None, Unit | None]]:
        """Pair up units of two parents. Missing partners are None."""
        return list(zip_longest(units_a, units_b))

    def resize(self, units: list[Unit], rate: float, rng: random.Random) -> list[Unit]:
        """Grow or shrink variable-length collections. Fixed-size families keep units."""
        return units

    def shape(self, genome: Genome) -> tuple:
        """Structural signature: family plus the required top-level fields."""
        return (genome.family, tuple(sorted(type(genome).model_fields)))

    def compatible(self, a: Genome, b: Genome) -> bool:
        return a.family == b.family == self.family and self.shape(a) == self.shape(b)

    def check(self, genome: Genome) -> None:
        """Reject genomes this strategy cannot operate on."""
        if not isinstance(genome, Genome) or genome.family != self.family:
            raise MalformedGenomeError(
                f"expected a '{self.family}' genome, got {type(genome).__name__}"
            )
