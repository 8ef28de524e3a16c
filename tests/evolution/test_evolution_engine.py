"""Tests for the EvolutionEngine public API."""

import asyncio

import pytest

from evoforge.events.bus import EventBus
from evoforge.evolution.engine import EvolutionEngine
from evoforge.evolution.models import RunConfig
from evoforge.exceptions import ConfigurationError, RunNotFoundError, RunStateError
from evoforge.genome.dsl import DslGenome
from evoforge.genome.vector import VectorGenomeFactory, VectorOps, VectorTemplate
from evoforge.reporting.sink import MemoryHistorySink
from evoforge.types import RunStatus, TerminationReason

from tests.conftest import BrokenEvaluator, EntityCountEvaluator, MeanGeneEvaluator, TargetEvaluator


@pytest.fixture
def engine():
    return EvolutionEngine(
        factory=VectorGenomeFactory(),
        evaluator=TargetEvaluator(),
        ops=VectorOps(),
        event_bus=EventBus(),
        sink=MemoryHistorySink(),
    )


def _config(**overrides) -> dict:
    params = {
        "population_size": 10,
        "elite_size": 1,
        "max_generations": 5,
        "fitness_threshold": 1.0,
        "seed": 7,
        "genome_template": VectorTemplate(length=5),
    }
    params.update(overrides)
    return params


@pytest.mark.asyncio
async def test_reference_scenario():
    engine = EvolutionEngine(VectorGenomeFactory(), MeanGeneEvaluator(), VectorOps())
    run_id = await engine.start_run(
        {
            "population_size": 30,
            "elite_size": 3,
            "mutation_rate": 0.1,
            "crossover_rate": 0.8,
            "max_generations": 50,
            "fitness_threshold": 0.9,
            "seed": 2024,
        },
        template=VectorTemplate(length=10),
    )
    run = await engine.wait(run_id)

    assert run.status in (RunStatus.CONVERGED, RunStatus.TERMINATED)
    assert len(run.generation_history) <= 51
    assert all(s.population_size == 30 for s in run.generation_history)
    if run.status is RunStatus.CONVERGED:
        assert run.best_fitness >= 0.9
        assert run.termination_reason is TerminationReason.THRESHOLD_REACHED
    else:
        assert run.current_generation == 50

    best = await engine.best_individual(run_id)
    assert best is not None
    assert best.fitness == run.best_fitness
    best_history = [s.best_fitness for s in await engine.generation_history(run_id)]
    assert all(b >= a for a, b in zip(best_history, best_history[1:]))


@pytest.mark.asyncio
async def test_population_of_one_is_rejected(engine):
    with pytest.raises(ConfigurationError):
        await engine.start_run(_config(population_size=1, elite_size=0))
    assert await engine.list_runs() == []


@pytest.mark.asyncio
async def test_elite_size_must_leave_room(engine):
    with pytest.raises(ConfigurationError):
        await engine.start_run(_config(population_size=5, elite_size=5))


@pytest.mark.asyncio
async def test_unknown_run(engine):
    with pytest.raises(RunNotFoundError):
        await engine.run_status("nope")
    with pytest.raises(RunNotFoundError):
        await engine.generation_history("nope")
    with pytest.raises(RunNotFoundError):
        await engine.best_individual("nope")
    with pytest.raises(RunNotFoundError):
        await engine.cancel_run("nope")
    with pytest.raises(RunNotFoundError):
        await engine.wait("nope")


@pytest.mark.asyncio
async def test_run_status_is_a_deep_copy(engine):
    run_id = await engine.start_run(_config())
    await engine.wait(run_id)

    snapshot = await engine.run_status(run_id)
    snapshot.population.clear()
    snapshot.generation_history.clear()

    fresh = await engine.run_status(run_id)
    assert len(fresh.population) == 10
    assert len(fresh.generation_history) == 6


@pytest.mark.asyncio
async def test_template_argument_shapes_genomes(engine):
    run_id = await engine.start_run(RunConfig.create(**_config()), template=VectorTemplate(length=3))
    run = await engine.wait(run_id)
    assert all(len(ind.genome.genes) == 3 for ind in run.population)


@pytest.mark.asyncio
async def test_cancel_running_run(engine):
    run_id = await engine.start_run(
        _config(max_generations=500),
        evaluator=TargetEvaluator(delay=0.01),
    )
    await asyncio.sleep(0.05)
    await engine.cancel_run(run_id)
    run = await engine.wait(run_id)

    assert run.status is RunStatus.TERMINATED
    assert run.cancelled
    assert run.termination_reason is TerminationReason.CANCELLED
    assert run.current_generation < 500
    assert await engine.best_individual(run_id) is not None

    with pytest.raises(RunStateError):
        await engine.cancel_run(run_id)


@pytest.mark.asyncio
async def test_failed_run_has_no_best_individual(engine):
    run_id = await engine.start_run(_config(), evaluator=BrokenEvaluator(healthy_calls=0))
    run = await engine.wait(run_id)

    assert run.status is RunStatus.FAILED
    assert run.error
    assert await engine.best_individual(run_id) is None
    with pytest.raises(RunStateError):
        await engine.cancel_run(run_id)


@pytest.mark.asyncio
async def test_concurrent_runs_are_independent(engine):
    ids = [
        await engine.start_run(_config(seed=1, max_generations=8)),
        await engine.start_run(_config(seed=1, max_generations=8)),
        await engine.start_run(_config(seed=2, max_generations=4, population_size=6)),
    ]
    runs = await asyncio.gather(*[engine.wait(i) for i in ids])

    assert len(set(ids)) == 3
    assert all(r.status is RunStatus.TERMINATED for r in runs)
    # same seed, same trajectory, even when interleaved
    first, second, third = runs
    assert [s.best_fitness for s in first.generation_history] == [
        s.best_fitness for s in second.generation_history
    ]
    assert len(third.generation_history) == 5
    assert all(len(r.population) == r.config.population_size for r in runs)
    assert len(await engine.list_runs()) == 3


@pytest.mark.asyncio
async def test_per_run_collaborators(engine, dsl_factory, dsl_ops, dsl_template):
    run_id = await engine.start_run(
        _config(max_generations=3),
        template=dsl_template,
        factory=dsl_factory,
        evaluator=EntityCountEvaluator(),
        ops=dsl_ops,
    )
    run = await engine.wait(run_id)

    assert run.status is RunStatus.TERMINATED
    assert all(isinstance(ind.genome, DslGenome) for ind in run.population)


@pytest.mark.asyncio
async def test_shutdown_stops_active_runs(engine):
    run_id = await engine.start_run(
        _config(max_generations=500),
        evaluator=TargetEvaluator(delay=0.01),
    )
    await asyncio.sleep(0.02)
    await engine.shutdown()

    run = await engine.run_status(run_id)
    assert run.is_finished
    assert run.cancelled


@pytest.mark.asyncio
async def test_list_runs(engine):
    assert await engine.list_runs() == []
    first = await engine.start_run(_config(seed=1))
    second = await engine.start_run(_config(seed=2, max_generations=2))
    await engine.wait(first)
    await engine.wait(second)

    runs = await engine.list_runs()
    assert [r.id for r in runs] == [first, second]
    assert all(r.is_finished for r in runs)
    runs[0].population.clear()
    assert (await engine.run_status(first)).population


@pytest.mark.asyncio
async def test_forget_finished_run(engine):
    run_id = await engine.start_run(_config(max_generations=2))
    await engine.wait(run_id)

    engine.forget(run_id)
    with pytest.raises(RunNotFoundError):
        await engine.run_status(run_id)
    with pytest.raises(RunNotFoundError):
        engine.forget(run_id)


@pytest.mark.asyncio
async def test_forget_refuses_active_run(engine):
    run_id = await engine.start_run(_config(max_generations=200))
    with pytest.raises(RunStateError):
        engine.forget(run_id)
    await engine.cancel_run(run_id)
    await engine.wait(run_id)
    engine.forget(run_id)


@pytest.mark.asyncio
async def test_finished_runs_beyond_limit_are_pruned():
    sink = MemoryHistorySink()
    engine = EvolutionEngine(
        VectorGenomeFactory(), TargetEvaluator(), VectorOps(), sink=sink, max_retained_runs=2,
    )
    run_ids = []
    for seed in range(4):
        run_id = await engine.start_run(_config(seed=seed, max_generations=2))
        await engine.wait(run_id)
        run_ids.append(run_id)

    # pruning happens when a run starts, so the newest finished run is still counted
    assert [r.id for r in await engine.list_runs()] == run_ids[1:]
    with pytest.raises(RunNotFoundError):
        await engine.run_status(run_ids[0])
    assert await sink.summary(run_ids[0]) is not None
