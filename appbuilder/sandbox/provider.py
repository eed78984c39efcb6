from __future__ import annotations

import base64
import logging
import shlex
from typing import Any, Protocol

from pydantic import BaseModel
from vercel.sandbox import AsyncSandbox

from appbuilder.errors import AppBuilderError


logger = logging.getLogger("appbuilder.sandbox.provider")


class CommandResult(BaseModel):
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class SandboxFiles(Protocol):
    async def read(self, path: str) -> str: ...

    async def write(self, path: str, content: str) -> None: ...

    async def remove(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...


class SandboxCommands(Protocol):
    async def run(self, command: str, timeout_ms: int | None = None) -> CommandResult: ...


class SandboxSession(Protocol):
    """A connected sandbox. File paths are relative to the project root."""

    sandbox_id: str
    files: SandboxFiles
    commands: SandboxCommands


class SandboxProvider(Protocol):
    async def create(
        self,
        *,
        timeout_ms: int,
        runtime: str | None = None,
        ports: list[int] | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SandboxSession: ...

    async def connect(self, sandbox_id: str) -> SandboxSession: ...

    async def pause(self, sandbox_id: str) -> None: ...

    async def kill(self, sandbox_id: str) -> None: ...

    async def set_timeout(self, sandbox_id: str, timeout_ms: int) -> None: ...


class SandboxFileError(AppBuilderError):
    pass


# -------------------------
# Vercel Sandbox adapter
# -------------------------


class _VercelFiles:
    def __init__(self, session: "VercelSandboxSession") -> None:
        self._session = session

    async def read(self, path: str) -> str:
        safe = shlex.quote(path)
        cmd = await self._session.sandbox.run_command(
            "bash",
            ["-lc", f"cd {self._session.root} && if [ -f {safe} ]; then base64 {safe}; else exit 2; fi"],
        )
        if getattr(cmd, "exit_code", 0) != 0:
            raise SandboxFileError(f"File not found in sandbox: {path}")
        b64 = (await cmd.stdout() or "").strip()
        return base64.b64decode(b64).decode("utf-8", errors="replace")

    async def write(self, path: str, content: str) -> None:
        await self._session.sandbox.write_files(
            [{"path": self._session.sandbox_path(path), "content": content.encode("utf-8")}]
        )

    async def remove(self, path: str) -> None:
        cmd = await self._session.sandbox.run_command(
            "bash", ["-lc", f"cd {self._session.root} && rm -f -- {shlex.quote(path)}"]
        )
        if getattr(cmd, "exit_code", 0) != 0:
            raise SandboxFileError(f"Could not remove {path} from sandbox")

    async def exists(self, path: str) -> bool:
        cmd = await self._session.sandbox.run_command(
            "bash", ["-lc", f"cd {self._session.root} && test -f {shlex.quote(path)}"]
        )
        return getattr(cmd, "exit_code", 1) == 0


class _VercelCommands:
    def __init__(self, session: "VercelSandboxSession") -> None:
        self._session = session

    async def run(self, command: str, timeout_ms: int | None = None) -> CommandResult:
        # The Vercel SDK has no per-command timeout; callers enforce it.
        cmd = await self._session.sandbox.run_command(
            "bash", ["-lc", f"cd {self._session.root} && {command}"]
        )
        exit_code = getattr(cmd, "exit_code", None)
        return CommandResult(
            exit_code=exit_code if exit_code is not None else -1,
            stdout=await cmd.stdout() or "",
            stderr=await cmd.stderr() or "",
        )


class VercelSandboxSession:
    def __init__(self, sandbox: AsyncSandbox, root: str | None = None) -> None:
        self.sandbox = sandbox
        self.sandbox_id: str = sandbox.sandbox_id
        self.cwd: str = sandbox.sandbox.cwd
        self.root: str = root or self.cwd
        self.files = _VercelFiles(self)
        self.commands = _VercelCommands(self)

    def sandbox_path(self, path: str) -> str:
        # write_files resolves relative paths against the sandbox cwd
        if self.root == self.cwd:
            return path
        return f"{self.root.rstrip('/')}/{path}"


class VercelSandboxProvider:
    """SandboxProvider backed by Vercel Sandbox.

    Vercel sandboxes have no native pause: pausing releases the local client
    and forgets the session, and the sandbox keeps its filesystem until its
    own timeout. Resuming re-attaches with `AsyncSandbox.get`.
    """

    def __init__(self, project_root: str | None = None) -> None:
        self._project_root = project_root
        self._sessions: dict[str, VercelSandboxSession] = {}

    async def create(
        self,
        *,
        timeout_ms: int,
        runtime: str | None = None,
        ports: list[int] | None = None,
        metadata: dict[str, str] | None = None,
    ) -> VercelSandboxSession:
        sandbox = await AsyncSandbox.create(timeout=timeout_ms, runtime=runtime, ports=ports)
        session = VercelSandboxSession(sandbox, self._project_root)
        self._sessions[session.sandbox_id] = session
        if self._project_root:
            await session.sandbox.run_command("bash", ["-lc", f"mkdir -p {shlex.quote(self._project_root)}"])
        logger.info("created vercel sandbox %s metadata=%s", session.sandbox_id, metadata or {})
        return session

    async def connect(self, sandbox_id: str) -> VercelSandboxSession:
        if sandbox_id in self._sessions:
            return self._sessions[sandbox_id]
        fetched = await AsyncSandbox.get(sandbox_id=sandbox_id)
        session = VercelSandboxSession(fetched, self._project_root)
        self._sessions[sandbox_id] = session
        return session

    async def pause(self, sandbox_id: str) -> None:
        session = self._sessions.pop(sandbox_id, None)
        if session is not None:
            await session.sandbox.client.aclose()

    async def kill(self, sandbox_id: str) -> None:
        session = self._sessions.pop(sandbox_id, None)
        sandbox: Any = session.sandbox if session else await AsyncSandbox.get(sandbox_id=sandbox_id)
        await sandbox.stop()
        try:
            await sandbox.client.aclose()
        except Exception as e:
            logger.debug("closing client for %s failed: %s", sandbox_id, e)

    async def set_timeout(self, sandbox_id: str, timeout_ms: int) -> None:
        session = await self.connect(sandbox_id)
        extend = getattr(session.sandbox, "extend_timeout", None)
        if extend is None:
            logger.debug("sandbox %s lifetime is fixed at creation", sandbox_id)
            return
        await extend(timeout_ms)
