"""History sinks — append-only record of generation snapshots and run summaries.

The controller hands every generation snapshot to its sink as soon as the
generation is fully evaluated, and the final summary once the run reaches
a terminal state. Sinks never feed back into the run.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from evoforge.config import settings
from evoforge.evolution.analytics import RunSummary
from evoforge.evolution.models import GenerationSnapshot

logger = logging.getLogger(__name__)


class HistorySink(ABC):
    """Where a run's history goes."""

    @abstractmethod
    async def record_snapshot(self, run_id: str, snapshot: GenerationSnapshot) -> None:
        ...

    @abstractmethod
    async def record_summary(self, summary: RunSummary) -> None:
        ...

    @abstractmethod
    async def snapshots(self, run_id: str) -> list[GenerationSnapshot]:
        """All snapshots of a run, oldest first."""

    @abstractmethod
    async def summary(self, run_id: str) -> RunSummary | None:
        ...


class MemoryHistorySink(HistorySink):
    """Keeps everything in process memory. The default for tests and embedding."""

    def __init__(self) -> None:
        self._snapshots: dict[str, list[GenerationSnapshot]] = {}
        self._summaries: dict[str, RunSummary] = {}

    async def record_snapshot(self, run_id: str, snapshot: GenerationSnapshot) -> None:
        self._snapshots.setdefault(run_id, []).append(snapshot)

    async def record_summary(self, summary: RunSummary) -> None:
        self._summaries[summary.run_id] = summary

    async def snapshots(self, run_id: str) -> list[GenerationSnapshot]:
        return list(self._snapshots.get(run_id, []))

    async def summary(self, run_id: str) -> RunSummary | None:
        return self._summaries.get(run_id)

    def __repr__(self) -> str:
        return f"MemoryHistorySink(runs={len(self._snapshots)})"


class SqliteHistorySink(HistorySink):
    """History backed by SQLite through aiosqlite.

    Call ``initialize()`` before use and ``close()`` when done. Writes are
    serialized by a lock so concurrent runs can share one sink.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = Path(db_path) if db_path is not None else settings.history_db_path
        self._lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create the tables if needed."""
        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS generation_snapshots (
                run_id TEXT NOT NULL,
                generation INTEGER NOT NULL,
                best_fitness REAL NOT NULL,
                average_fitness REAL NOT NULL,
                worst_fitness REAL NOT NULL,
                diversity REAL NOT NULL,
                population_size INTEGER NOT NULL,
                low_diversity INTEGER DEFAULT 0,
                evaluated INTEGER DEFAULT 0,
                evaluation_failures INTEGER DEFAULT 0,
                duration_ms REAL DEFAULT 0,
                created_at TEXT NOT NULL,
                PRIMARY KEY (run_id, generation)
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS evolution_runs (
                run_id TEXT PRIMARY KEY,
                summary TEXT NOT NULL,
                status TEXT NOT NULL,
                finished_at TEXT
            )
        """)
        await self._db.commit()
        logger.debug("History database ready at %s", self._db_path)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SqliteHistorySink used before initialize()")
        return self._db

    async def record_snapshot(self, run_id: str, snapshot: GenerationSnapshot) -> None:
        db = self._conn()
        async with self._lock:
            await db.execute(
                """INSERT INTO generation_snapshots
                   (run_id, generation, best_fitness, average_fitness,
                    worst_fitness, diversity, population_size, low_diversity,
                    evaluated, evaluation_failures, duration_ms, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    run_id,
                    snapshot.generation,
                    snapshot.best_fitness,
                    snapshot.average_fitness,
                    snapshot.worst_fitness,
                    snapshot.diversity,
                    snapshot.population_size,
                    int(snapshot.low_diversity),
                    snapshot.evaluated,
                    snapshot.evaluation_failures,
                    snapshot.duration_ms,
                    snapshot.created_at.isoformat(),
                ),
            )
            await db.commit()

    async def record_summary(self, summary: RunSummary) -> None:
        db = self._conn()
        async with self._lock:
            await db.execute(
                """INSERT OR REPLACE INTO evolution_runs
                   (run_id, summary, status, finished_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    summary.run_id,
                    summary.model_dump_json(),
                    summary.status.value,
                    summary.finished_at.isoformat() if summary.finished_at else None,
                ),
            )
            await db.commit()

    async def snapshots(self, run_id: str) -> list[GenerationSnapshot]:
        db = self._conn()
        cursor = await db.execute(
            """SELECT generation, best_fitness, average_fitness, worst_fitness,
                      diversity, population_size, low_diversity, evaluated,
                      evaluation_failures, duration_ms, created_at
               FROM generation_snapshots WHERE run_id = ? ORDER BY generation""",
            (run_id,),
        )
        rows = await cursor.fetchall()
        return [
            GenerationSnapshot(
                generation=row[0],
                best_fitness=row[1],
                average_fitness=row[2],
                worst_fitness=row[3],
                diversity=row[4],
                population_size=row[5],
                low_diversity=bool(row[6]),
                evaluated=row[7],
                evaluation_failures=row[8],
                duration_ms=row[9],
                created_at=row[10],
            )
            for row in rows
        ]

    async def summary(self, run_id: str) -> RunSummary | None:
        db = self._conn()
        cursor = await db.execute(
            "SELECT summary FROM evolution_runs WHERE run_id = ?", (run_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return RunSummary.model_validate_json(row[0])

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def __repr__(self) -> str:
        return f"SqliteHistorySink(path={self._db_path})"
