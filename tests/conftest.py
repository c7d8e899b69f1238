import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from agent_orchestrator.config import ResolvedConfig
from agent_orchestrator.errors import SessionCreateConflict
from agent_orchestrator.models import Shortcut, Tool
from agent_orchestrator.services.session import SessionManager
from agent_orchestrator.services.storage import Storage
from agent_orchestrator.services.sync import SyncLayer
from agent_orchestrator.services.worktree import WorktreeInfo


class FakeTmux:
    """In-memory stand-in for TmuxAdapter that records create calls."""

    def __init__(self, create_delay: float = 0.0) -> None:
        self.create_delay = create_delay
        self.sessions: dict[str, dict] = {}
        self.create_calls: list[tuple[str, str, str | None]] = []
        self.killed: list[str] = []
        self.attached: list[str] = []
        self._lock = threading.Lock()

    def has_session(self, name: str) -> bool:
        with self._lock:
            return name in self.sessions

    def create_session(self, name: str, working_directory: str, command: str | None) -> None:
        with self._lock:
            self.create_calls.append((name, working_directory, command))
        time.sleep(self.create_delay)
        with self._lock:
            if name in self.sessions:
                raise SessionCreateConflict(name)
            self.sessions[name] = {"cwd": working_directory, "command": command, "pane": "", "alive": True}

    def capture_pane(self, name: str) -> str:
        with self._lock:
            return self.sessions.get(name, {}).get("pane", "")

    def pane_pid(self, name: str) -> int | None:
        with self._lock:
            session = self.sessions.get(name)
            return 4242 if session and session["alive"] else None

    def is_alive(self, name: str) -> bool:
        return self.pane_pid(name) is not None

    def session_directory(self, name: str) -> str | None:
        with self._lock:
            session = self.sessions.get(name)
            return session["cwd"] if session else None

    def send_keys(self, name: str, text: str, enter: bool = False, literal: bool = True) -> None:
        pass

    def kill_session(self, name: str) -> None:
        with self._lock:
            self.killed.append(name)
            self.sessions.pop(name, None)

    def attach(self, name: str) -> None:
        self.attached.append(name)


@pytest.fixture()
def fake_config(tmp_path: Path) -> ResolvedConfig:
    return ResolvedConfig(
        db_path=tmp_path / "av.db",
        tmux_timeout_s=1.0,
        poll_interval_s=60.0,
        capture_lines=40,
        worktree_base_dir=tmp_path / "worktrees",
        branch_prefix="av/",
        develop_branch="develop",
    )


@pytest.fixture()
def storage(tmp_path: Path):
    store = Storage(tmp_path / "test.db")
    store.migrate()
    yield store
    store.close()


@pytest.fixture()
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture()
def make_shortcut():
    def _make(**overrides) -> Shortcut:
        data = dict(
            id="test-id",
            key="x",
            name="Test Project",
            project_path="/test/path",
            tool=Tool.CLAUDE,
            cli_options="",
            group_path="",
            skip_permissions=False,
            use_worktree=False,
            worktree_branch="",
            use_base_develop=False,
            created_at=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
            order=0,
        )
        data.update(overrides)
        return Shortcut(**data)

    return _make


@pytest.fixture()
def slow_tmux() -> FakeTmux:
    return FakeTmux(create_delay=0.1)


@pytest.fixture()
def services(fake_config, storage, fake_tmux):
    """Fully wired services over a temp database, fake tmux and no git."""
    from agent_orchestrator.cli import Services

    manager = SessionManager(
        fake_tmux,
        fake_config,
        provisioner=lambda shortcut, config: WorktreeInfo(path=shortcut.project_path, branch=None),
    )
    return Services(fake_config, storage, fake_tmux, manager, SyncLayer(storage, manager))
