from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from appbuilder.sandbox.provider import SandboxSession


class HandleOrigin(str, Enum):
    CREATED = "created"
    RESUMED = "resumed"
    ACTIVE = "active"


@dataclass
class SandboxHandle:
    sandbox_id: str
    project_id: str
    session: SandboxSession
    created_at: float
    last_used_at: float
    is_paused: bool = False
    # Handles with open locks are skipped by the idle reaper
    lock_count: int = 0
    origin: HandleOrigin = field(default=HandleOrigin.CREATED)
    # When the provider-side timeout was last extended
    extended_at: float = 0.0

    @property
    def locked(self) -> bool:
        return self.lock_count > 0


class SandboxRegistry:
    """Live sandbox handles, indexed by sandbox id and by project id.

    At most one handle is registered per project; registering a new handle for
    a project replaces the previous one.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, SandboxHandle] = {}
        self._by_project: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, sandbox_id: str) -> SandboxHandle | None:
        return self._by_id.get(sandbox_id)

    def for_project(self, project_id: str) -> SandboxHandle | None:
        sid = self._by_project.get(project_id)
        return self._by_id.get(sid) if sid else None

    def register(self, handle: SandboxHandle) -> None:
        previous = self._by_project.get(handle.project_id)
        if previous and previous != handle.sandbox_id:
            self._by_id.pop(previous, None)
        self._by_id[handle.sandbox_id] = handle
        self._by_project[handle.project_id] = handle.sandbox_id

    def remove(self, sandbox_id: str) -> SandboxHandle | None:
        handle = self._by_id.pop(sandbox_id, None)
        if handle and self._by_project.get(handle.project_id) == sandbox_id:
            self._by_project.pop(handle.project_id, None)
        return handle

    def handles(self) -> list[SandboxHandle]:
        return list(self._by_id.values())
