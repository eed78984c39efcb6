from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence

from pydantic import BaseModel, Field

from appbuilder.config import Settings, SyncStrategy
from appbuilder.errors import AppBuilderError, ProjectNotFoundError
from appbuilder.project_store import GenerationStatus, ProjectRecord, ProjectStore, utcnow
from appbuilder.sandbox.exclusions import ExclusionPolicy
from appbuilder.sandbox.provider import SandboxSession
from appbuilder.sandbox.utils import batched, list_sandbox_files, normalize_project_path


logger = logging.getLogger("appbuilder.sync")


class FileWrite(BaseModel):
    path: str
    content: str


class FileFailure(BaseModel):
    path: str
    error: str


class PushResult(BaseModel):
    written: list[str] = Field(default_factory=list)
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    failed: list[FileFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    committed: bool = False


class PullResult(BaseModel):
    files_synced: int = 0
    total_files: int = 0
    skipped: int = 0
    failed: list[FileFailure] = Field(default_factory=list)
    version: int = 0


class FileSyncEngine:
    """Reconciles the project file map with a sandbox filesystem.

    Every call moves data in one direction only: `push` writes durable
    content into the sandbox, `pull` replaces the durable map with what the
    sandbox holds. Nothing here runs implicitly.
    """

    def __init__(self, store: ProjectStore, policy: ExclusionPolicy, settings: Settings) -> None:
        self.store = store
        self.policy = policy
        self.settings = settings

    async def _load(self, project_id: str) -> ProjectRecord:
        record = await self.store.get(project_id)
        if record is None:
            raise ProjectNotFoundError(project_id)
        return record

    async def _write_one(self, session: SandboxSession, path: str, content: str) -> str | None:
        try:
            await session.files.write(path, content)
        except Exception as e:
            logger.warning("sandbox write failed for %s: %s", path, e)
            return str(e) or e.__class__.__name__
        return None

    async def _read_one(self, session: SandboxSession, path: str) -> tuple[str | None, str | None]:
        try:
            return await session.files.read(path), None
        except Exception as e:
            logger.warning("sandbox read failed for %s: %s", path, e)
            return None, str(e) or e.__class__.__name__

    def screen(
        self, files: Iterable[FileWrite]
    ) -> tuple[dict[str, str], list[str], list[FileFailure]]:
        """Normalize paths and drop binary or excluded files.

        Returns (accepted, skipped, failed). The last write for a path wins;
        paths escaping the project root end up in `failed`.
        """
        accepted: dict[str, str] = {}
        skipped: list[str] = []
        failed: list[FileFailure] = []
        for f in files:
            try:
                path = normalize_project_path(f.path)
            except ValueError as e:
                failed.append(FileFailure(path=f.path, error=str(e)))
                continue
            if not self.policy.accepts(path, f.content):
                skipped.append(path)
                continue
            accepted[path] = f.content
        return accepted, skipped, failed

    # -------------------------
    # Push (database -> sandbox)
    # -------------------------

    async def push(
        self, project_id: str, files: Iterable[FileWrite], session: SandboxSession
    ) -> PushResult:
        """Write files to the sandbox, then commit the successful ones.

        With the dual-write strategy the durable map is updated once, after
        the sandbox writes finish, with exactly the files that were written.
        Failed files are reported individually and never committed.
        """
        record = await self._load(project_id)
        accepted, skipped, failed = self.screen(files)
        result = PushResult(skipped=skipped, failed=failed)

        items = list(accepted.items())
        for batch in batched(items, self.settings.sync_batch_size):
            errors = await asyncio.gather(
                *(self._write_one(session, path, content) for path, content in batch)
            )
            for (path, _), error in zip(batch, errors):
                if error is None:
                    result.written.append(path)
                else:
                    result.failed.append(FileFailure(path=path, error=error))

        for path in result.written:
            if path in record.code_files:
                result.updated.append(path)
            else:
                result.created.append(path)

        if result.written and self.settings.sync_strategy == SyncStrategy.DUAL_WRITE:
            latest = await self._load(project_id)
            code_files = dict(latest.code_files)
            code_files.update({path: accepted[path] for path in result.written})
            await self.store.update(project_id, code_files=code_files, last_code_update_at=utcnow())
            result.committed = True

        logger.info(
            "push[%s] written=%d failed=%d skipped=%d committed=%s",
            project_id,
            len(result.written),
            len(result.failed),
            len(result.skipped),
            result.committed,
        )
        return result

    async def push_project(self, project_id: str, session: SandboxSession) -> int:
        """Copy the whole durable file map into a sandbox.

        Used to seed a freshly provisioned sandbox. Returns the number of
        files written; failures are logged and skipped.
        """
        record = await self._load(project_id)
        accepted, _, failed = self.screen(
            FileWrite(path=p, content=c) for p, c in record.code_files.items()
        )
        for failure in failed:
            logger.warning("not seeding %s: %s", failure.path, failure.error)
        items = list(accepted.items())
        written = 0
        for batch in batched(items, self.settings.push_batch_size):
            errors = await asyncio.gather(*(self._write_one(session, p, c) for p, c in batch))
            written += sum(1 for e in errors if e is None)
        logger.info("seeded sandbox %s with %d/%d files", session.sandbox_id, written, len(items))
        return written

    async def seed(self, project_id: str, files: Mapping[str, str]) -> PushResult:
        """Commit files straight into the durable map, with no sandbox involved.

        Applies the same path and content rules as `push`.
        """
        record = await self._load(project_id)
        accepted, skipped, failed = self.screen(
            FileWrite(path=p, content=c) for p, c in files.items()
        )
        result = PushResult(skipped=skipped, failed=failed)
        if accepted:
            code_files = dict(record.code_files)
            code_files.update(accepted)
            await self.store.update(project_id, code_files=code_files, last_code_update_at=utcnow())
            for path in accepted:
                result.written.append(path)
                (result.updated if path in record.code_files else result.created).append(path)
            result.committed = True
        logger.info(
            "seed[%s] written=%d skipped=%d failed=%d",
            project_id,
            len(result.written),
            len(result.skipped),
            len(result.failed),
        )
        return result

    async def remove(self, project_id: str, path: str, session: SandboxSession | None) -> bool:
        """Remove a file from the sandbox (when present) and then from the map.

        Returns False when the file exists nowhere. With SANDBOX_FIRST a file
        that only lives in the sandbox is still removed there. A sandbox
        removal failure raises before the durable map is touched.
        """
        record = await self._load(project_id)
        in_map = path in record.code_files
        if not in_map:
            sandbox_only = (
                session is not None
                and self.settings.sync_strategy == SyncStrategy.SANDBOX_FIRST
                and await session.files.exists(path)
            )
            if not sandbox_only:
                return False
        if session is not None:
            try:
                await session.files.remove(path)
            except Exception as e:
                raise AppBuilderError(f"Could not delete {path} from sandbox: {e}") from e
        if not in_map:
            return True
        latest = await self._load(project_id)
        code_files = dict(latest.code_files)
        code_files.pop(path, None)
        await self.store.update(project_id, code_files=code_files, last_code_update_at=utcnow())
        return True

    # -------------------------
    # Pull (sandbox -> database)
    # -------------------------

    async def _read_text_files(
        self, session: SandboxSession, paths: Sequence[str]
    ) -> tuple[dict[str, str], int, list[FileFailure]]:
        contents: dict[str, str] = {}
        skipped = 0
        failed: list[FileFailure] = []
        for batch in batched(paths, self.settings.sync_batch_size):
            reads = await asyncio.gather(*(self._read_one(session, p) for p in batch))
            for path, (content, error) in zip(batch, reads):
                if error is not None or content is None:
                    failed.append(FileFailure(path=path, error=error or "empty read"))
                    continue
                cleaned, looks_binary = self.policy.strip_null_bytes(content)
                if looks_binary:
                    logger.debug("skipping binary-looking file %s", path)
                    skipped += 1
                    continue
                contents[path] = cleaned
        return contents, skipped, failed

    async def pull(self, project_id: str, session: SandboxSession) -> PullResult:
        """Replace the durable file map with the sandbox's text files."""
        await self._load(project_id)
        listing = await list_sandbox_files(session, self.policy, self.settings.command_timeout_ms)
        candidates = [p for p in listing if not self.policy.is_excluded_path(p)]
        text_paths = [p for p in candidates if not self.policy.is_binary_path(p)]
        skipped = len(candidates) - len(text_paths)

        contents, binary_content, failed = await self._read_text_files(session, text_paths)
        skipped += binary_content

        updated = await self.store.update(
            project_id,
            increment_version=True,
            code_files=contents,
            generation_status=GenerationStatus.READY,
            last_code_update_at=utcnow(),
        )
        logger.info(
            "pull[%s] synced=%d total=%d skipped=%d failed=%d version=%d",
            project_id,
            len(contents),
            len(candidates),
            skipped,
            len(failed),
            updated.version,
        )
        return PullResult(
            files_synced=len(contents),
            total_files=len(candidates),
            skipped=skipped,
            failed=failed,
            version=updated.version,
        )

    async def refresh_files(
        self, project_id: str, paths: Sequence[str], session: SandboxSession
    ) -> list[str]:
        """Pull selected files from the sandbox into the map, leaving the rest.

        Returns the paths that were refreshed.
        """
        wanted = [p for p in paths if self.policy.accepts(p)]
        contents, _, failed = await self._read_text_files(session, wanted)
        for failure in failed:
            logger.warning("refresh[%s] could not read %s: %s", project_id, failure.path, failure.error)
        if not contents:
            return []
        latest = await self._load(project_id)
        code_files = dict(latest.code_files)
        code_files.update(contents)
        await self.store.update(project_id, code_files=code_files, last_code_update_at=utcnow())
        return sorted(contents)
