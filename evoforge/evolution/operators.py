"""Mutation and crossover operators.

Both operators are pure over genomes: they build new genome values and
never touch their inputs. The per-unit work is delegated to the injected
``GenomeOps``; these functions own the bookkeeping (provenance counters,
fitness invalidation, shape checks).
"""

from __future__ import annotations

import random

from evoforge.evolution.models import Individual
from evoforge.exceptions import IncompatibleGenomeError, MalformedGenomeError
from evoforge.genome.base import Genome, GenomeOps


def _check_shape(ops: GenomeOps, before: Genome, after: Genome, operator: str) -> None:
    if not isinstance(after, Genome) or after.family != before.family:
        raise MalformedGenomeError(
            f"{operator} returned {type(after).__name__}, expected a '{before.family}' genome"
        )
    if ops.shape(after) != ops.shape(before):
        raise MalformedGenomeError(
            f"{operator} changed genome shape {ops.shape(before)} -> {ops.shape(after)}"
        )


def mutate(
    individual: Individual,
    mutation_rate: float,
    ops: GenomeOps,
    rng: random.Random,
) -> Individual:
    """Perturb each unit with probability ``mutation_rate``.

    Returns the very same individual when nothing changed, so a cached
    fitness survives. Otherwise returns a copy with the new genome, one
    more mutation on the counter and no fitness.
    """
    if mutation_rate <= 0.0:
        return individual

    genome = individual.genome
    ops.check(genome)

    original = ops.units(genome)
    units = []
    changed = False
    for unit in original:
        if rng.random() < mutation_rate:
            new_unit = ops.mutate_unit(unit, rng)
            changed = changed or new_unit != unit
            units.append(new_unit)
        else:
            units.append(unit)

    resized = ops.resize(units, mutation_rate, rng)
    changed = changed or resized != units

    if not changed:
        return individual

    mutated = ops.rebuild(genome, resized)
    _check_shape(ops, genome, mutated, "mutation")
    return individual.model_copy(update={
        "genome": mutated,
        "fitness": None,
        "phenotype": None,
        "mutation_count": individual.mutation_count + 1,
    })


def crossover(
    parent1: Individual,
    parent2: Individual,
    ops: GenomeOps,
    rng: random.Random,
) -> Individual:
    """Uniform crossover: every aligned unit comes from one parent or the other.

    Where only one parent has a unit (a longer variable-length collection),
    the unit is kept with probability 0.5. Metadata outside the units
    follows ``parent1``.
    """
    g1, g2 = parent1.genome, parent2.genome
    if g1.family != g2.family:
        raise IncompatibleGenomeError(
            f"cannot cross a '{g1.family}' genome with a '{g2.family}' genome"
        )
    ops.check(g1)
    if not ops.compatible(g1, g2):
        raise IncompatibleGenomeError(
            f"cannot cross {ops.shape(g1)} with {ops.shape(g2)}"
        )

    units = []
    for a, b in ops.align(ops.units(g1), ops.units(g2)):
        if a is not None and b is not None:
            units.append(ops.combine_unit(a, b, rng))
        elif rng.random() < 0.5:
            units.append(a if a is not None else b)

    child = ops.rebuild(g1, units)
    _check_shape(ops, g1, child, "crossover")
    return Individual(
        genome=child,
        generation=max(parent1.generation, parent2.generation) + 1,
        parent_ids=[parent1.id, parent2.id],
        crossover_count=1,
    )


def clone_child(parent: Individual) -> Individual:
    """A new individual starting from ``parent`` unchanged (mutation-only lineage).

    The cached fitness and phenotype come along; a later no-op mutation
    therefore needs no re-evaluation.
    """
    return Individual(
        genome=parent.genome.model_copy(deep=True),
        fitness=parent.fitness,
        phenotype=parent.phenotype,
        generation=parent.generation + 1,
        parent_ids=[parent.id],
    )
