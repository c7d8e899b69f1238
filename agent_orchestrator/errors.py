"""Error taxonomy shared by the storage, worktree, tmux and session layers.

Lookup misses are not errors: storage returns ``None`` for them.
"""


class OrchestratorError(Exception):
    """Base class for every error raised by agent_orchestrator."""


class ValidationError(OrchestratorError):
    """User input broke a naming rule. The message is shown as-is."""


class StorageError(OrchestratorError):
    """The database could not be opened, migrated, read or written."""


class WorktreeCreationError(OrchestratorError):
    def __init__(self, project_path: str, reason: str) -> None:
        self.project_path = project_path
        self.reason = reason
        super().__init__(f"Failed to provision worktree for {project_path}: {reason}")


class MultiplexerError(OrchestratorError):
    """A tmux command failed."""

    def __init__(self, session_name: str, message: str) -> None:
        self.session_name = session_name
        super().__init__(message)


class SessionCreateConflict(MultiplexerError):
    def __init__(self, session_name: str) -> None:
        super().__init__(session_name, f"tmux session '{session_name}' already exists")


class MultiplexerTimeoutError(MultiplexerError):
    def __init__(self, session_name: str, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(session_name, f"tmux {operation} for '{session_name}' timed out after {timeout:g}s")
