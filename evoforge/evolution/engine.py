"""EvolutionEngine — registry and public API for evolution runs.

Each started run gets its own RunController driven by an asyncio task.
Runs share the injected collaborators (factory, evaluator, operators,
event bus, sink) but no mutable state. Everything handed back to callers
is a deep copy, so a caller can never reach into a live population.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from evoforge.events.bus import EventBus
from evoforge.evolution.controller import RunController
from evoforge.evolution.fitness import FitnessEvaluator
from evoforge.evolution.models import EvolutionRun, GenerationSnapshot, Individual, RunConfig
from evoforge.config import settings
from evoforge.exceptions import RunNotFoundError, RunStateError
from evoforge.genome.base import GenomeFactory, GenomeOps
from evoforge.reporting.sink import HistorySink
from evoforge.types import RunStatus

logger = structlog.get_logger()


class EvolutionEngine:
    """Starts, tracks and cancels evolution runs."""

    def __init__(
        self,
        factory: GenomeFactory,
        evaluator: FitnessEvaluator,
        ops: GenomeOps,
        event_bus: EventBus | None = None,
        sink: HistorySink | None = None,
        max_retained_runs: int | None = None,
    ) -> None:
        self._factory = factory
        self._evaluator = evaluator
        self._ops = ops
        self._event_bus = event_bus
        self._sink = sink
        self._controllers: dict[str, RunController] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._max_retained = settings.max_retained_runs if max_retained_runs is None else max_retained_runs

    async def start_run(
        self,
        config: RunConfig | dict[str, Any] | None = None,
        template: Any = None,
        *,
        factory: GenomeFactory | None = None,
        evaluator: FitnessEvaluator | None = None,
        ops: GenomeOps | None = None,
        **overrides: Any,
    ) -> str:
        """Validate the configuration and start a run in the background.

        Raises ConfigurationError before anything is registered when the
        parameters are invalid. ``factory``, ``evaluator`` and ``ops``
        replace the engine's defaults for this run only.
        """
        if template is not None:
            overrides["genome_template"] = template
        cfg = RunConfig.create(config, **overrides)

        controller = RunController(
            cfg,
            factory or self._factory,
            evaluator or self._evaluator,
            ops or self._ops,
            event_bus=self._event_bus,
            sink=self._sink,
        )
        run_id = controller.run.id
        self._prune()
        self._controllers[run_id] = controller
        task = asyncio.create_task(controller.execute(), name=f"evoforge-run-{run_id}")
        task.add_done_callback(lambda _: self._tasks.pop(run_id, None))
        self._tasks[run_id] = task
        logger.info(
            "run_registered",
            run_id=run_id,
            population_size=cfg.population_size,
            max_generations=cfg.max_generations,
        )
        return run_id

    async def run_status(self, run_id: str) -> EvolutionRun:
        """Deep snapshot of the run as of the last completed generation."""
        return self._controller(run_id).run.model_copy(deep=True)

    async def generation_history(self, run_id: str) -> list[GenerationSnapshot]:
        return list(self._controller(run_id).run.generation_history)

    async def best_individual(self, run_id: str) -> Individual | None:
        """The run's best individual; None until it converged or terminated."""
        run = self._controller(run_id).run
        if run.status not in (RunStatus.CONVERGED, RunStatus.TERMINATED):
            return None
        if run.best_individual is None:
            return None
        return run.best_individual.model_copy(deep=True)

    async def cancel_run(self, run_id: str) -> None:
        """Request cancellation. Raises RunStateError if the run already ended."""
        self._controller(run_id).cancel()

    async def wait(self, run_id: str) -> EvolutionRun:
        """Block until the run reaches a terminal state."""
        controller = self._controller(run_id)
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return controller.run.model_copy(deep=True)

    async def list_runs(self) -> list[EvolutionRun]:
        return [c.run.model_copy(deep=True) for c in self._controllers.values()]

    def forget(self, run_id: str) -> None:
        """Drop a finished run from memory. Its sink history is untouched."""
        run = self._controller(run_id).run
        if not run.is_finished:
            raise RunStateError(f"run {run_id} is still {run.status.value}")
        del self._controllers[run_id]
        self._tasks.pop(run_id, None)

    async def shutdown(self) -> None:
        """Cancel every unfinished run and wait for all of them to stop."""
        for controller in self._controllers.values():
            if not controller.run.is_finished and not controller.cancel_requested:
                controller.cancel()
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending)
        logger.info("engine_shutdown", runs=len(self._controllers))

    def _prune(self) -> None:
        finished = [rid for rid, c in self._controllers.items() if c.run.is_finished]
        excess = len(finished) - self._max_retained
        for run_id in finished[:max(excess, 0)]:
            self.forget(run_id)
        if excess > 0:
            logger.debug("runs_pruned", count=excess)

    def _controller(self, run_id: str) -> RunController:
        controller = self._controllers.get(run_id)
        if controller is None:
            raise RunNotFoundError(f"no run with id {run_id!r}")
        return controller

    def __repr__(self) -> str:
        active = sum(1 for c in self._controllers.values() if not c.run.is_finished)
        return f"EvolutionEngine(runs={len(self._controllers)}, active={active})"
