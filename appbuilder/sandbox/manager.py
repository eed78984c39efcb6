from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable

from appbuilder.config import Settings
from appbuilder.errors import (
    ProjectNotFoundError,
    SandboxProvisionError,
    SandboxResumeError,
)
from appbuilder.project_store import ProjectStore, utcnow
from appbuilder.sandbox.provider import SandboxProvider
from appbuilder.sandbox.registry import HandleOrigin, SandboxHandle, SandboxRegistry


logger = logging.getLogger("appbuilder.sandbox.manager")


class SandboxLifecycleManager:
    """Creates, resumes, pauses and kills sandboxes for projects.

    Lifecycle transitions for one project are serialized with a per-project
    lock, so concurrent `get_or_create` calls never provision twice.
    """

    def __init__(
        self,
        provider: SandboxProvider,
        store: ProjectStore,
        registry: SandboxRegistry,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.store = store
        self.registry = registry
        self.settings = settings
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._reaper: asyncio.Task | None = None

    def _project_lock(self, project_id: str) -> asyncio.Lock:
        return self._locks.setdefault(project_id, asyncio.Lock())

    def _drop_lock(self, project_id: str) -> None:
        lock = self._locks.get(project_id)
        if lock is not None and not lock.locked():
            del self._locks[project_id]

    def touch(self, handle: SandboxHandle) -> None:
        handle.last_used_at = self._clock()

    # -------------------------
    # Acquisition
    # -------------------------

    async def get_or_create(self, project_id: str) -> SandboxHandle:
        """Return a running sandbox for the project, provisioning one if needed."""
        async with self._project_lock(project_id):
            try:
                handle = await self._resolve(project_id)
            except SandboxResumeError as e:
                logger.warning(
                    "resume failed for project %s, provisioning a new sandbox: %s",
                    project_id,
                    e,
                )
                handle = None
            if handle is not None:
                return handle
            return await self._provision(project_id)

    async def get_active(self, project_id: str) -> SandboxHandle | None:
        """Return a running sandbox if the project has one; never provisions.

        Paused or persisted sandboxes are resumed transparently. Raises
        SandboxResumeError when a known sandbox cannot be resumed.
        """
        async with self._project_lock(project_id):
            return await self._resolve(project_id)

    async def _resolve(self, project_id: str) -> SandboxHandle | None:
        handle = self.registry.for_project(project_id)
        if handle is not None:
            if handle.is_paused:
                try:
                    return await self._resume(handle.sandbox_id, project_id)
                except SandboxResumeError:
                    self.registry.remove(handle.sandbox_id)
                    raise
            handle.origin = HandleOrigin.ACTIVE
            self.touch(handle)
            if handle.last_used_at - handle.extended_at >= self.settings.sandbox_timeout_ms / 2000:
                await self.keep_alive(handle.sandbox_id)
            return handle

        record = await self.store.get(project_id)
        if record is None:
            raise ProjectNotFoundError(project_id)
        if record.sandbox_id:
            logger.info("resuming persisted sandbox %s for project %s", record.sandbox_id, project_id)
            return await self._resume(record.sandbox_id, project_id)
        return None

    async def _provision(self, project_id: str) -> SandboxHandle:
        logger.info("creating sandbox for project %s", project_id)
        try:
            session = await self.provider.create(
                timeout_ms=self.settings.sandbox_timeout_ms,
                runtime=self.settings.sandbox_runtime,
                ports=self.settings.sandbox_ports or None,
                metadata={"projectId": project_id},
            )
        except Exception as e:
            logger.error("sandbox creation failed for project %s: %s", project_id, e)
            raise SandboxProvisionError(f"Sandbox creation failed: {e}") from e

        now = self._clock()
        handle = SandboxHandle(
            sandbox_id=session.sandbox_id,
            project_id=project_id,
            session=session,
            created_at=now,
            last_used_at=now,
            origin=HandleOrigin.CREATED,
            extended_at=now,
        )
        self.registry.register(handle)
        await self.store.update(project_id, sandbox_id=handle.sandbox_id, sandbox_paused_at=None)
        logger.info("created sandbox %s for project %s", handle.sandbox_id, project_id)
        return handle

    async def _resume(self, sandbox_id: str, project_id: str) -> SandboxHandle:
        try:
            session = await self.provider.connect(sandbox_id)
        except Exception as e:
            logger.error("failed to resume sandbox %s: %s", sandbox_id, e)
            raise SandboxResumeError(f"Failed to resume sandbox {sandbox_id}: {e}") from e

        now = self._clock()
        existing = self.registry.get(sandbox_id)
        handle = SandboxHandle(
            sandbox_id=sandbox_id,
            project_id=project_id,
            session=session,
            created_at=existing.created_at if existing else now,
            last_used_at=now,
            is_paused=False,
            lock_count=existing.lock_count if existing else 0,
            origin=HandleOrigin.RESUMED,
            extended_at=existing.extended_at if existing else 0.0,
        )
        self.registry.register(handle)
        await self.store.update(project_id, sandbox_id=sandbox_id, sandbox_paused_at=None)
        logger.info("resumed sandbox %s for project %s", sandbox_id, project_id)
        return handle

    # -------------------------
    # Pause / kill / keep-alive
    # -------------------------

    async def pause(self, sandbox_id: str) -> bool:
        """Pause a sandbox to stop billing; its filesystem is preserved."""
        handle = self.registry.get(sandbox_id)
        if handle is None:
            logger.warning("pause: sandbox %s not found in registry", sandbox_id)
            return False
        async with self._project_lock(handle.project_id):
            if handle.is_paused:
                return True
            try:
                await self.provider.pause(sandbox_id)
            except Exception as e:
                logger.error("failed to pause sandbox %s: %s", sandbox_id, e)
                return False
            handle.is_paused = True
            self.touch(handle)
            await self.store.update(handle.project_id, sandbox_paused_at=utcnow())
        logger.info("paused sandbox %s", sandbox_id)
        return True

    async def kill(self, sandbox_id: str) -> bool:
        """Destroy a sandbox permanently, dropping its filesystem."""
        handle = self.registry.get(sandbox_id)
        lock = self._project_lock(handle.project_id) if handle else contextlib.nullcontext()
        async with lock:
            try:
                await self.provider.kill(sandbox_id)
            except Exception as e:
                logger.error("failed to kill sandbox %s: %s", sandbox_id, e)
                return False
            self.registry.remove(sandbox_id)
            if handle is not None:
                record = await self.store.get(handle.project_id)
                if record is not None and record.sandbox_id == sandbox_id:
                    await self.store.update(handle.project_id, sandbox_id=None, sandbox_paused_at=None)
        if handle is not None:
            self._drop_lock(handle.project_id)
        logger.info("killed sandbox %s", sandbox_id)
        return True

    async def keep_alive(self, sandbox_id: str, timeout_ms: int | None = None) -> None:
        handle = self.registry.get(sandbox_id)
        if handle is None:
            logger.warning("keep_alive: sandbox %s not found", sandbox_id)
            return
        try:
            await self.provider.set_timeout(sandbox_id, timeout_ms or self.settings.sandbox_timeout_ms)
        except Exception as e:
            logger.warning("failed to extend timeout for %s: %s", sandbox_id, e)
        else:
            handle.extended_at = self._clock()
        self.touch(handle)

    def lock(self, sandbox_id: str) -> None:
        handle = self.registry.get(sandbox_id)
        if handle is not None:
            handle.lock_count += 1
            self.touch(handle)

    def unlock(self, sandbox_id: str) -> None:
        handle = self.registry.get(sandbox_id)
        if handle is not None:
            handle.lock_count = max(0, handle.lock_count - 1)
            self.touch(handle)

    @contextlib.asynccontextmanager
    async def locked(self, handle: SandboxHandle) -> AsyncIterator[SandboxHandle]:
        """Keep the idle reaper away from `handle` for the duration of the block."""
        self.lock(handle.sandbox_id)
        try:
            yield handle
        finally:
            self.unlock(handle.sandbox_id)

    # -------------------------
    # Idle reaping
    # -------------------------

    async def reap_idle(self) -> tuple[int, int]:
        """Pause idle sandboxes and kill ones that stayed paused too long.

        Returns (paused, killed) counts.
        """
        now = self._clock()
        paused = 0
        killed = 0
        for handle in self.registry.handles():
            if handle.locked:
                continue
            idle = now - handle.last_used_at
            if not handle.is_paused and idle > self.settings.idle_pause_seconds:
                if await self.pause(handle.sandbox_id):
                    paused += 1
            elif handle.is_paused and idle > self.settings.kill_after_paused_seconds:
                if await self.kill(handle.sandbox_id):
                    killed += 1
        if paused or killed:
            logger.info("cleanup: %d paused, %d killed, %d tracked", paused, killed, len(self.registry))
        return paused, killed

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reaper_interval_seconds)
            try:
                await self.reap_idle()
            except Exception:
                logger.exception("sandbox cleanup pass failed")

    def start_reaper(self) -> None:
        if self._reaper is None or self._reaper.done():
            logger.info("starting sandbox idle reaper")
            self._reaper = asyncio.create_task(self._reap_forever())

    async def stop_reaper(self) -> None:
        if self._reaper is None:
            return
        self._reaper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reaper
        self._reaper = None
