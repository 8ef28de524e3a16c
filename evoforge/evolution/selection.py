"""Tournament selection, elitism and best-individual extraction."""

from __future__ import annotations

import math
import random

from evoforge.evolution.models import Individual


def _rank(individual: Individual) -> float:
    """Unevaluated individuals rank below every score."""
    return individual.fitness if individual.fitness is not None else -math.inf


def tournament_select(
    population: list[Individual], tournament_size: int, rng: random.Random
) -> Individual:
    """Best of ``tournament_size`` uniform draws, with replacement.

    Ties go to the contender drawn first. Size 1 is plain uniform selection.
    """
    if not population:
        raise ValueError("cannot select from an empty population")
    if tournament_size < 1:
        raise ValueError("tournament_size must be at least 1")

    winner = population[rng.randrange(len(population))]
    for _ in range(tournament_size - 1):
        contender = population[rng.randrange(len(population))]
        if _rank(contender) > _rank(winner):
            winner = contender
    return winner


def select_parents(
    population: list[Individual], tournament_size: int, rng: random.Random
) -> tuple[Individual, Individual]:
    """Two independent tournaments. Both may pick the same individual."""
    return (
        tournament_select(population, tournament_size, rng),
        tournament_select(population, tournament_size, rng),
    )


def fitter(a: Individual, b: Individual) -> Individual:
    """The higher-scoring of two individuals; ``a`` on a tie."""
    return b if _rank(b) > _rank(a) else a


def carry_elite(population: list[Individual], elite_size: int) -> list[Individual]:
    """Top ``elite_size`` individuals, aged by one, fitness kept.

    The sort is stable, so equal scores keep population order.
    """
    if elite_size <= 0:
        return []
    ranked = sorted(population, key=_rank, reverse=True)
    return [ind.aged() for ind in ranked[:elite_size]]


def best_of(population: list[Individual]) -> Individual | None:
    """Highest fitness; ties go to the youngest, then to population order."""
    best: Individual | None = None
    for ind in population:
        if best is None:
            best = ind
            continue
        if _rank(ind) > _rank(best) or (_rank(ind) == _rank(best) and ind.age < best.age):
            best = ind
    return best
