from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class SyncStrategy(str, Enum):
    """How generated files reach durable storage.

    DUAL_WRITE commits each pushed file to the project file map right after
    its sandbox write succeeds. SANDBOX_FIRST leaves the file map untouched
    until an explicit pull.
    """

    DUAL_WRITE = "dual_write"
    SANDBOX_FIRST = "sandbox_first"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Settings(BaseModel):
    """Runtime configuration for sandboxes, sync and streaming."""

    sandbox_project_root: str = "/vercel/sandbox"
    sandbox_runtime: str | None = "node22"
    sandbox_timeout_ms: int = 600_000
    sandbox_ports: list[int] = Field(default_factory=lambda: [3000])

    # Idle reaping
    idle_pause_seconds: float = 300.0
    kill_after_paused_seconds: float = 1800.0
    reaper_interval_seconds: float = 60.0

    sync_batch_size: int = Field(default=10, ge=1)
    push_batch_size: int = Field(default=64, ge=1)
    sync_strategy: SyncStrategy = SyncStrategy.DUAL_WRITE

    command_timeout_ms: int = 30_000
    install_timeout_ms: int = 120_000
    scaffold_timeout_ms: int = 180_000

    stream_chunk_threshold: int = 1000
    stream_chunk_size: int = Field(default=500, ge=1)
    stream_chunk_delay_seconds: float = 0.01

    search_max_results: int = 100
    package_manager: str = "npm"

    project_store_backend: str = "memory"
    project_store_namespace: str = "appbuilder-projects"
    project_store_ttl_seconds: int = 60 * 60 * 24 * 30

    @classmethod
    def from_env(cls) -> "Settings":
        runtime = os.getenv("SANDBOX_RUNTIME", "node22").strip()
        ports_raw = os.getenv("SANDBOX_PORTS", "3000")
        ports = [int(p) for p in ports_raw.split(",") if p.strip()]
        return cls(
            sandbox_project_root=os.getenv("SANDBOX_PROJECT_ROOT", "/vercel/sandbox"),
            sandbox_runtime=runtime or None,
            sandbox_timeout_ms=_env_int("SANDBOX_TIMEOUT_MS", 600_000),
            sandbox_ports=ports,
            idle_pause_seconds=_env_float("SANDBOX_IDLE_PAUSE_SECONDS", 300.0),
            kill_after_paused_seconds=_env_float(
                "SANDBOX_KILL_AFTER_PAUSED_SECONDS", 1800.0
            ),
            reaper_interval_seconds=_env_float("SANDBOX_REAPER_INTERVAL_SECONDS", 60.0),
            sync_batch_size=_env_int("SYNC_BATCH_SIZE", 10),
            push_batch_size=_env_int("PUSH_BATCH_SIZE", 64),
            sync_strategy=SyncStrategy(os.getenv("SYNC_STRATEGY", "dual_write")),
            command_timeout_ms=_env_int("COMMAND_TIMEOUT_MS", 30_000),
            install_timeout_ms=_env_int("INSTALL_TIMEOUT_MS", 120_000),
            scaffold_timeout_ms=_env_int("SCAFFOLD_TIMEOUT_MS", 180_000),
            stream_chunk_threshold=_env_int("STREAM_CHUNK_THRESHOLD", 1000),
            stream_chunk_size=_env_int("STREAM_CHUNK_SIZE", 500),
            stream_chunk_delay_seconds=_env_float("STREAM_CHUNK_DELAY_SECONDS", 0.01),
            search_max_results=_env_int("SEARCH_MAX_RESULTS", 100),
            package_manager=os.getenv("PACKAGE_MANAGER", "npm"),
            project_store_backend=os.getenv("PROJECT_STORE_BACKEND", "memory"),
            project_store_namespace=os.getenv(
                "PROJECT_STORE_NAMESPACE", "appbuilder-projects"
            ),
            project_store_ttl_seconds=_env_int(
                "PROJECT_STORE_TTL_SECONDS", 60 * 60 * 24 * 30
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded once from the environment and `.env`."""
    here = os.path.dirname(os.path.abspath(__file__))
    load_dotenv(os.path.join(os.path.dirname(here), ".env"), override=False)
    return Settings.from_env()
