"""Core types shared across all evoforge subsystems."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import TypeAlias

# ── ID Types ──────────────────────────────────────────────────────────────────

RunId: TypeAlias = str
IndividualId: TypeAlias = str
Score: TypeAlias = float


def new_id() -> str:
    return uuid.uuid4().hex[:12]


# ── Run States ────────────────────────────────────────────────────────────────


class RunStatus(str, Enum):
    INITIALIZING = "initializing"
    EVOLVING = "evolving"
    CONVERGED = "converged"
    TERMINATED = "terminated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({RunStatus.CONVERGED, RunStatus.TERMINATED, RunStatus.FAILED})

# Allowed moves of the run state machine. Terminal states have no exits.
RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.INITIALIZING: frozenset({RunStatus.EVOLVING, RunStatus.FAILED}),
    RunStatus.EVOLVING: _TERMINAL,
    RunStatus.CONVERGED: frozenset(),
    RunStatus.TERMINATED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


class TerminationReason(str, Enum):
    THRESHOLD_REACHED = "threshold_reached"
    MAX_GENERATIONS_REACHED = "max_generations_reached"
    CANCELLED = "cancelled"
    ERROR = "error"


class OddSlotPolicy(str, Enum):
    """How the last offspring slot is filled when the free slot count is odd."""

    MUTATION_ONLY = "mutation_only"  # one mutated clone of a tournament winner
    SURPLUS_CHILD = "surplus_child"  # breed a full pair, keep the first child


class DiversityTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
