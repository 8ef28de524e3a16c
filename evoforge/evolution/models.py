"""Value types of the evolution engine: individuals, snapshots, runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from evoforge.config import settings
from evoforge.exceptions import ConfigurationError, RunStateError
from evoforge.genome.families import AnyGenome
from evoforge.types import (
    RUN_TRANSITIONS,
    OddSlotPolicy,
    RunStatus,
    TerminationReason,
    new_id,
)


class Individual(BaseModel):
    """A genome plus its evaluation and provenance metadata."""

    id: str = Field(default_factory=new_id)
    genome: AnyGenome
    fitness: float | None = None
    generation: int = Field(default=0, ge=0)
    age: int = Field(default=0, ge=0)  # generations survived unchanged
    parent_ids: list[str] = Field(default_factory=list, max_length=2)
    mutation_count: int = Field(default=0, ge=0)
    crossover_count: int = Field(default=0, ge=0)
    phenotype: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_evaluated(self) -> bool:
        return self.fitness is not None

    def aged(self) -> Individual:
        """Copy carried into the next generation unchanged, one generation older."""
        return self.model_copy(update={"age": self.age + 1}, deep=True)

    def __repr__(self) -> str:
        return (
            f"Individual(id={self.id}, family={self.genome.family}, "
            f"fitness={self.fitness}, generation={self.generation}, age={self.age})"
        )


class GenerationSnapshot(BaseModel):
    """Immutable per-generation statistics for reporting."""

    generation: int
    best_fitness: float
    average_fitness: float
    worst_fitness: float
    diversity: float
    population_size: int
    low_diversity: bool = False  # diversity under the run's floor
    evaluated: int = 0  # individuals scored for this generation
    evaluation_failures: int = 0
    duration_ms: float = 0.0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"frozen": True}


class RunConfig(BaseModel):
    """Parameters of one evolution run. Validated before a run exists."""

    population_size: int = Field(default=100, ge=2)
    mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    crossover_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    elite_size: int = Field(default=10, ge=0)
    max_generations: int = Field(default=50, ge=1)
    fitness_threshold: float = 0.95
    tournament_size: int = Field(default_factory=lambda: settings.default_tournament_size, ge=1)
    score_min: float = 0.0
    score_max: float = 1.0
    max_in_flight: int = Field(default_factory=lambda: settings.max_concurrent_evaluations, ge=1)
    evaluation_timeout: float = Field(default_factory=lambda: settings.evaluation_timeout_seconds, gt=0)
    diversity_floor: float = Field(default_factory=lambda: settings.diversity_floor, ge=0.0, le=1.0)
    odd_slot_policy: OddSlotPolicy = OddSlotPolicy.MUTATION_ONLY
    seed: int | None = Field(default_factory=lambda: settings.default_seed)
    genome_template: Any = None
    target_spec: Any = None

    @model_validator(mode="after")
    def _check_relations(self) -> RunConfig:
        if self.elite_size >= self.population_size:
            raise ValueError(
                f"elite_size ({self.elite_size}) must be below population_size ({self.population_size})"
            )
        if self.score_min >= self.score_max:
            raise ValueError("score_min must be below score_max")
        if not self.score_min <= self.fitness_threshold <= self.score_max:
            raise ValueError(
                f"fitness_threshold {self.fitness_threshold} outside "
                f"[{self.score_min}, {self.score_max}]"
            )
        return self

    @classmethod
    def create(cls, config: RunConfig | dict[str, Any] | None = None, **overrides: Any) -> RunConfig:
        """Validate raw parameters, raising ConfigurationError on any problem."""
        if isinstance(config, RunConfig):
            # Templates stay live objects here, not dumped dicts.
            data = {name: getattr(config, name) for name in cls.model_fields}
        else:
            data = dict(config or {})
        data.update(overrides)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e


class EvolutionRun(BaseModel):
    """Run-level state. Owns its population and generation history."""

    id: str = Field(default_factory=new_id)
    config: RunConfig
    target_spec: Any = None
    status: RunStatus = RunStatus.INITIALIZING
    current_generation: int = 0
    best_fitness: float | None = None
    average_fitness: float | None = None
    worst_fitness: float | None = None
    diversity_score: float | None = None
    generation_history: list[GenerationSnapshot] = Field(default_factory=list)
    population: list[Individual] = Field(default_factory=list)
    best_individual: Individual | None = None
    cancelled: bool = False
    termination_reason: TerminationReason | None = None
    error: str = ""
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: RunStatus) -> None:
        """Move the state machine, refusing moves it does not allow."""
        if status not in RUN_TRANSITIONS[self.status]:
            raise RunStateError(
                f"run {self.id}: cannot go from {self.status.value} to {status.value}"
            )
        self.status = status

    def __repr__(self) -> str:
        return (
            f"EvolutionRun(id={self.id}, status={self.status.value}, "
            f"generation={self.current_generation}, best={self.best_fitness})"
        )
