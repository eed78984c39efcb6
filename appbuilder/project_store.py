from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field
from vercel.cache import AsyncRuntimeCache

from appbuilder.errors import ProjectNotFoundError, StoreUnavailableError


class GenerationStatus(str, Enum):
    EMPTY = "empty"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    READY = "ready"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectRecord(BaseModel):
    """Durable state of a project as seen by the tool layer.

    Attributes:
        id: Project identifier.
        code_files: The project file map (relative path -> full text content).
        sandbox_id: Last sandbox bound to the project, kept for resumption.
        sandbox_paused_at: When that sandbox was paused, if it is paused.
        version: Incremented on every full sync from the sandbox.
        generation_status: Where the project is in its scaffolding lifecycle.
    """

    id: str
    code_files: dict[str, str] = Field(default_factory=dict)
    sandbox_id: str | None = None
    sandbox_paused_at: datetime | None = None
    version: int = 0
    generation_status: GenerationStatus = GenerationStatus.EMPTY
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_code_update_at: datetime | None = None


_UPDATABLE_FIELDS = {
    "code_files",
    "sandbox_id",
    "sandbox_paused_at",
    "generation_status",
    "last_code_update_at",
}


class ProjectStore(Protocol):
    async def create(self, project_id: str) -> ProjectRecord: ...

    async def get(self, project_id: str) -> ProjectRecord | None: ...

    async def update(
        self, project_id: str, *, increment_version: bool = False, **fields: Any
    ) -> ProjectRecord: ...


def _apply_update(
    record: ProjectRecord, increment_version: bool, fields: dict[str, Any]
) -> ProjectRecord:
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown project fields: {sorted(unknown)}")
    data = record.model_dump()
    data.update(fields)
    if "code_files" in fields:
        data["code_files"] = dict(fields["code_files"])
    if increment_version:
        data["version"] = record.version + 1
    data["updated_at"] = utcnow()
    return ProjectRecord.model_validate(data)


class InMemoryProjectStore:
    """Process-local store, used for tests and single-instance development."""

    def __init__(self) -> None:
        self._records: dict[str, ProjectRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, project_id: str) -> ProjectRecord:
        async with self._lock:
            record = ProjectRecord(id=project_id)
            self._records[project_id] = record
            return record.model_copy(deep=True)

    async def get(self, project_id: str) -> ProjectRecord | None:
        record = self._records.get(project_id)
        return record.model_copy(deep=True) if record else None

    async def update(
        self, project_id: str, *, increment_version: bool = False, **fields: Any
    ) -> ProjectRecord:
        async with self._lock:
            record = self._records.get(project_id)
            if record is None:
                raise ProjectNotFoundError(project_id)
            updated = _apply_update(record, increment_version, fields)
            self._records[project_id] = updated
            return updated.model_copy(deep=True)


class RuntimeCacheProjectStore:
    """Project records kept in Vercel Runtime Cache.

    Updates are read-modify-write under a process-local lock; a single
    instance is expected to drive a given project at a time.
    """

    def __init__(self, namespace: str, ttl_seconds: int) -> None:
        self._cache = AsyncRuntimeCache(namespace=namespace)
        self._ttl = ttl_seconds
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(project_id: str) -> str:
        return f"project:{project_id}"

    async def _load(self, project_id: str) -> ProjectRecord | None:
        try:
            raw = await self._cache.get(self._key(project_id))
        except Exception as e:
            raise StoreUnavailableError(str(e)) from e
        if not isinstance(raw, dict):
            return None
        return ProjectRecord.model_validate(raw)

    async def _save(self, record: ProjectRecord) -> None:
        try:
            await self._cache.set(
                self._key(record.id),
                record.model_dump(mode="json"),
                {"ttl": self._ttl, "tags": [f"project:{record.id}"]},
            )
        except Exception as e:
            raise StoreUnavailableError(str(e)) from e

    async def create(self, project_id: str) -> ProjectRecord:
        record = ProjectRecord(id=project_id)
        async with self._lock:
            await self._save(record)
        return record

    async def get(self, project_id: str) -> ProjectRecord | None:
        return await self._load(project_id)

    async def update(
        self, project_id: str, *, increment_version: bool = False, **fields: Any
    ) -> ProjectRecord:
        async with self._lock:
            record = await self._load(project_id)
            if record is None:
                raise ProjectNotFoundError(project_id)
            updated = _apply_update(record, increment_version, fields)
            await self._save(updated)
            return updated
