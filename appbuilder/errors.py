class AppBuilderError(Exception):
    """Base class for errors raised by the sandbox and sync layers."""


class ProjectNotFoundError(AppBuilderError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class FileNotFoundInProjectError(AppBuilderError):
    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}")
        self.path = path


class SandboxNotFoundError(AppBuilderError):
    def __init__(self, project_id: str) -> None:
        super().__init__(
            f"No active sandbox for project {project_id}. "
            "Call create_project_sandbox first."
        )
        self.project_id = project_id


class SandboxProvisionError(AppBuilderError):
    pass


class SandboxResumeError(AppBuilderError):
    pass


class CommandTimeoutError(AppBuilderError):
    def __init__(self, command: str, timeout_ms: int) -> None:
        super().__init__(f"Command timed out after {timeout_ms}ms: {command}")
        self.command = command
        self.timeout_ms = timeout_ms


class StoreUnavailableError(AppBuilderError):
    """The durable record store could not be reached.

    This is the one failure the tool layer lets propagate: nothing sensible
    can be reported to the agent when the backing store itself is down.
    """
