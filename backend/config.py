"""
Runtime settings for the HTTP host.

Values come from environment variables prefixed ``RISK_ENGINE_`` (for
example ``RISK_ENGINE_MAX_WORKERS=4``).  The engine modules themselves take
explicit arguments and never read settings.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RISK_ENGINE_", extra="ignore")

    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Simulation defaults and guard rails
    default_horizon_days: int = 252
    default_path_count: int = 100
    default_seed: int = 42
    max_path_count: int = 10_000
    max_horizon_days: int = 2_520
    max_workers: int = 1
    simulation_timeout_seconds: float = 30.0

    # Entries kept in the /analyze result cache
    cache_size: int = 128


@lru_cache()
def get_settings() -> EngineSettings:
    return EngineSettings()
