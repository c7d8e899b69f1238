from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Tool(str, Enum):
    CLAUDE = "claude"
    OPENCODE = "opencode"
    GEMINI = "gemini"
    CODEX = "codex"
    CUSTOM = "custom"
    SHELL = "shell"


class SessionStatus(str, Enum):
    RUNNING = "running"
    WAITING = "waiting"
    IDLE = "idle"
    STOPPED = "stopped"
    ERROR = "error"


STATUS_ICONS = {
    SessionStatus.RUNNING: "●",
    SessionStatus.WAITING: "◐",
    SessionStatus.IDLE: "○",
    SessionStatus.STOPPED: "◻",
    SessionStatus.ERROR: "✗",
}


class Shortcut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid4().hex)
    key: str
    name: str
    project_path: str
    tool: Tool = Tool.CLAUDE
    cli_options: str = ""
    group_path: str = ""
    skip_permissions: bool = False
    use_worktree: bool = False
    worktree_branch: str = ""
    use_base_develop: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    order: int = 0


class Group(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str
    name: str

    @classmethod
    def from_path(cls, path: str) -> "Group":
        path = path.strip("/")
        return cls(path=path, name=path.rsplit("/", 1)[-1])

    @property
    def parent_path(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""


class Session(BaseModel):
    """Runtime binding between a shortcut and a live tmux session. Never persisted."""

    model_config = ConfigDict(extra="ignore")

    shortcut_id: str
    tmux_session_name: str
    working_directory: str
    branch: str | None = None
    status: SessionStatus = SessionStatus.IDLE
    pane_pid: int | None = None
