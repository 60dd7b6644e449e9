from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DISCOVERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sessions
    session_timeout_hours: int = 24
    min_functional_requirements: int = 3

    # Storage
    storage_backend: Literal["file", "memory", "redis"] = "file"
    state_root: Path = Path(".")
    state_dir: str = ".taskmaster"
    state_filename: str = "state.json"

    # Redis (storage_backend == "redis")
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "discovery:state:"
    lock_ttl_seconds: int = 30
    lock_wait_seconds: int = 10

    # Quality scoring
    quality_gap_floor: int = 70

    # Research routing
    research_router_config: Path | None = None

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
