"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class EvoforgeSettings(BaseSettings):
    log_level: str = "INFO"

    # Evaluation driver
    max_concurrent_evaluations: int = 8  # in-flight evaluator calls per run
    evaluation_timeout_seconds: float = 30.0

    # Run defaults
    default_seed: int | None = None  # None = fresh entropy per run
    default_tournament_size: int = 3
    diversity_floor: float = 0.05  # below this a generation is flagged as converging early

    # Reporting
    history_db_path: Path = Path(".evoforge/history.db")
    event_history_limit: int = 500
    max_retained_runs: int = 100  # finished runs an engine keeps in memory
    fitness_cache_size: int = 4096  # scored genomes remembered per run

    model_config = {"env_prefix": "EVOFORGE_"}


settings = EvoforgeSettings()
