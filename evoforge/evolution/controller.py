"""RunController — drives one evolution run from first population to terminal state.

Per generation:
  1. Record statistics and a snapshot for the current population
  2. Stop on threshold, generation limit or a pending cancel
  3. Carry elites, breed the free slots (crossover, then mutation)
  4. Evaluate the offspring concurrently
  5. Swap in the next generation once it is fully evaluated

Operator and invariant errors, and evaluator outages, fail the run. The
last complete population and the history recorded so far stay on the run.
"""

from __future__ import annotations

import random
import time
from datetime import datetime
from typing import Any

import structlog

from evoforge.events.bus import EventBus
from evoforge.evolution.analytics import summarize
from evoforge.evolution.fitness import EvaluationBatch, FitnessDriver, FitnessEvaluator
from evoforge.evolution.models import EvolutionRun, GenerationSnapshot, Individual, RunConfig
from evoforge.evolution.operators import clone_child, crossover, mutate
from evoforge.evolution.population import PopulationManager, fitness_stats
from evoforge.evolution.selection import best_of, carry_elite, fitter, select_parents
from evoforge.exceptions import (
    EvaluatorOutageError,
    InvariantViolation,
    OperatorError,
    RunStateError,
)
from evoforge.genome.base import GenomeFactory, GenomeOps
from evoforge.reporting.sink import HistorySink
from evoforge.types import OddSlotPolicy, RunStatus, TerminationReason

logger = structlog.get_logger()

_FATAL = (OperatorError, InvariantViolation, EvaluatorOutageError)


class RunController:
    """Owns one run: its population, its RNG stream and its history."""

    def __init__(
        self,
        config: RunConfig,
        factory: GenomeFactory,
        evaluator: FitnessEvaluator,
        ops: GenomeOps,
        event_bus: EventBus | None = None,
        sink: HistorySink | None = None,
        run: EvolutionRun | None = None,
    ) -> None:
        self._config = config
        self._ops = ops
        self._event_bus = event_bus
        self._sink = sink
        self._run = run or EvolutionRun(config=config, target_spec=config.target_spec)
        self._rng = random.Random(config.seed)
        self._population = PopulationManager(
            factory,
            ops,
            population_size=config.population_size,
            max_in_flight=config.max_in_flight,
        )
        self._driver = FitnessDriver(
            evaluator,
            max_in_flight=config.max_in_flight,
            timeout=config.evaluation_timeout,
            score_min=config.score_min,
            score_max=config.score_max,
        )
        self._cancel_requested = False
        self._last_batch: EvaluationBatch | None = None
        self._last_duration_ms = 0.0
        self._log = logger.bind(run_id=self._run.id)

    @property
    def run(self) -> EvolutionRun:
        return self._run

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Ask the run to stop at the next generation boundary."""
        if self._run.is_finished:
            raise RunStateError(
                f"run {self._run.id} already {self._run.status.value}, cannot cancel"
            )
        self._cancel_requested = True
        self._log.info("run_cancel_requested", generation=self._run.current_generation)

    async def execute(self) -> EvolutionRun:
        """Run to a terminal state and return the run."""
        try:
            await self._initialize()
            while not self._run.is_finished:
                await self._tick()
        except _FATAL as e:
            self._log.error("run_failed", error=str(e), error_type=type(e).__name__)
            await self._fail(e)
        except Exception as e:
            self._log.exception("run_crashed", error=str(e))
            await self._fail(e)
        return self._run

    # ── Phases ────────────────────────────────────────────────────────────────

    async def _initialize(self) -> None:
        cfg = self._config
        start = time.monotonic()
        population = await self._population.initialize(
            cfg.population_size, cfg.genome_template, self._rng
        )
        batch = await self._evaluate(population, generation=0)

        self._run.population = batch.population
        self._last_duration_ms = (time.monotonic() - start) * 1000
        self._run.transition(RunStatus.EVOLVING)

        self._log.info(
            "run_started",
            population_size=cfg.population_size,
            max_generations=cfg.max_generations,
            family=self._ops.family,
        )
        await self._emit("evolution.run_started", {
            "run_id": self._run.id,
            "population_size": cfg.population_size,
            "max_generations": cfg.max_generations,
            "family": self._ops.family,
        })

    async def _tick(self) -> None:
        cfg = self._config
        run = self._run
        await self._record_generation()

        if run.best_fitness is not None and run.best_fitness >= cfg.fitness_threshold:
            await self._finish(RunStatus.CONVERGED, TerminationReason.THRESHOLD_REACHED)
            return
        if run.current_generation >= cfg.max_generations:
            await self._finish(RunStatus.TERMINATED, TerminationReason.MAX_GENERATIONS_REACHED)
            return
        if self._cancel_requested:
            run.cancelled = True
            await self._finish(RunStatus.TERMINATED, TerminationReason.CANCELLED)
            return

        start = time.monotonic()
        offspring = self.breed(run.population)
        batch = await self._evaluate(offspring, generation=run.current_generation + 1)
        next_population = self._population.replace(run.population, batch.population)

        run.population = next_population
        run.current_generation += 1
        self._last_duration_ms = (time.monotonic() - start) * 1000

    async def _evaluate(self, population: list[Individual], generation: int) -> EvaluationBatch:
        batch = await self._driver.evaluate_population(population)
        self._last_batch = batch
        if batch.failed:
            await self._emit("evolution.evaluation_failed", {
                "run_id": self._run.id,
                "generation": generation,
                "failed": batch.failed,
                "errors": dict(batch.failures),
            })
        return batch

    async def _record_generation(self) -> GenerationSnapshot:
        run = self._run
        best, average, worst = fitness_stats(run.population)
        diversity = self._population.diversity(run.population)
        run.best_fitness = best
        run.average_fitness = average
        run.worst_fitness = worst
        run.diversity_score = diversity

        batch = self._last_batch
        low = diversity < self._config.diversity_floor
        was_low = bool(run.generation_history) and run.generation_history[-1].low_diversity
        snapshot = GenerationSnapshot(
            generation=run.current_generation,
            best_fitness=best,
            average_fitness=average,
            worst_fitness=worst,
            diversity=diversity,
            population_size=len(run.population),
            low_diversity=low,
            evaluated=batch.evaluated + batch.cached if batch else 0,
            evaluation_failures=batch.failed if batch else 0,
            duration_ms=round(self._last_duration_ms, 3),
        )
        run.generation_history.append(snapshot)

        self._log.debug(
            "generation_completed",
            generation=snapshot.generation,
            best=best,
            average=round(average, 4),
            diversity=round(diversity, 4),
        )
        if self._sink is not None:
            try:
                await self._sink.record_snapshot(run.id, snapshot)
            except Exception as e:
                self._log.warning("history_sink_failed", error=str(e))
        await self._emit("evolution.generation_completed", {
            "run_id": run.id,
            "generation": snapshot.generation,
            "best_fitness": best,
            "average_fitness": average,
            "worst_fitness": worst,
            "diversity": diversity,
        })
        if low and not was_low:
            self._log.warning(
                "diversity_low",
                generation=snapshot.generation,
                diversity=round(diversity, 4),
                floor=self._config.diversity_floor,
            )
            await self._emit("evolution.diversity_low", {
                "run_id": run.id,
                "generation": snapshot.generation,
                "diversity": diversity,
                "floor": self._config.diversity_floor,
            })
        return snapshot

    # ── Breeding ──────────────────────────────────────────────────────────────

    def breed(self, population: list[Individual]) -> list[Individual]:
        """Build the next generation: elites first, then bred children.

        Free slots are filled two at a time. A single leftover slot follows
        the run's odd-slot policy.
        """
        cfg = self._config
        offspring = carry_elite(population, cfg.elite_size)
        free = cfg.population_size - len(offspring)

        for _ in range(free // 2):
            offspring.extend(self._breed_pair(population))

        if free % 2:
            if cfg.odd_slot_policy is OddSlotPolicy.SURPLUS_CHILD:
                offspring.append(self._breed_pair(population)[0])
            else:
                offspring.append(self._breed_single(population))
        return offspring

    def _breed_pair(self, population: list[Individual]) -> list[Individual]:
        p1, p2 = select_parents(population, self._config.tournament_size, self._rng)
        crossed = self._rng.random() < self._config.crossover_rate
        return [
            self._child(population, p1, p2, crossed),
            self._child(population, p2, p1, crossed),
        ]

    def _breed_single(self, population: list[Individual]) -> Individual:
        p1, p2 = select_parents(population, self._config.tournament_size, self._rng)
        return self._child(population, p1, p2, crossed=False)

    def _child(
        self,
        population: list[Individual],
        p1: Individual,
        p2: Individual,
        crossed: bool,
    ) -> Individual:
        """One child for one slot. A failing family hook gets one retry with
        fresh parents; after that the slot takes a clone of the fitter parent.
        """
        try:
            return self._offspring(p1, p2, crossed)
        except OperatorError:
            raise
        except Exception as e:
            self._log.warning("operator_failed", error=str(e), retry=True)

        p1, p2 = select_parents(population, self._config.tournament_size, self._rng)
        try:
            return self._offspring(p1, p2, crossed)
        except OperatorError:
            raise
        except Exception as e:
            self._log.warning("operator_failed", error=str(e), retry=False)
        return clone_child(fitter(p1, p2))

    def _offspring(self, p1: Individual, p2: Individual, crossed: bool) -> Individual:
        if crossed:
            child = crossover(p1, p2, self._ops, self._rng)
        else:
            child = clone_child(fitter(p1, p2))
        return mutate(child, self._config.mutation_rate, self._ops, self._rng)

    # ── Termination ───────────────────────────────────────────────────────────

    async def _finish(self, status: RunStatus, reason: TerminationReason) -> None:
        run = self._run
        run.best_individual = best_of(run.population)
        run.termination_reason = reason
        run.finished_at = datetime.utcnow()
        run.transition(status)

        self._log.info(
            "run_finished",
            status=status.value,
            reason=reason.value,
            generations=run.current_generation,
            best_fitness=run.best_fitness,
        )
        if reason is TerminationReason.CANCELLED:
            topic = "evolution.run_cancelled"
        elif status is RunStatus.CONVERGED:
            topic = "evolution.run_converged"
        else:
            topic = "evolution.run_terminated"
        await self._emit(topic, {
            "run_id": run.id,
            "generation": run.current_generation,
            "best_fitness": run.best_fitness,
            "reason": reason.value,
        })
        await self._report()

    async def _fail(self, error: Exception) -> None:
        run = self._run
        run.error = f"{type(error).__name__}: {error}"
        run.termination_reason = TerminationReason.ERROR
        run.finished_at = datetime.utcnow()
        if not run.is_finished:
            run.transition(RunStatus.FAILED)
        await self._emit("evolution.run_failed", {
            "run_id": run.id,
            "generation": run.current_generation,
            "error": run.error,
        })
        await self._report()

    async def _report(self) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.record_summary(summarize(self._run))
        except Exception as e:
            self._log.warning("history_sink_failed", error=str(e))

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        """Emit an event on the bus."""
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="run_controller")

    def __repr__(self) -> str:
        return f"RunController(run={self._run!r})"
