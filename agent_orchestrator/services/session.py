"""Maps shortcuts to live tmux sessions.

`find_or_create_for_shortcut` is idempotent: a shortcut resolves to the
session named after its id, which is created at most once. Creation is
serialized per shortcut id; different shortcuts never wait on each other.
"""

import concurrent.futures
import logging
import threading
from typing import Callable, Iterable

from agent_orchestrator.config import ResolvedConfig
from agent_orchestrator.errors import MultiplexerError, SessionCreateConflict
from agent_orchestrator.models import Session, SessionStatus, Shortcut
from agent_orchestrator.services.status import classify, visible_text
from agent_orchestrator.services.tmux import TmuxAdapter, session_name_for
from agent_orchestrator.services.worktree import WorktreeInfo, provision
from agent_orchestrator.tools import build_command

logger = logging.getLogger(__name__)

Provisioner = Callable[[Shortcut, ResolvedConfig], WorktreeInfo]


class SessionManager:
    def __init__(
        self,
        tmux: TmuxAdapter,
        config: ResolvedConfig,
        provisioner: Provisioner = provision,
        poll_workers: int = 8,
    ) -> None:
        self._tmux = tmux
        self._config = config
        self._provision = provisioner
        self._poll_workers = poll_workers
        self._guards: dict[str, threading.Lock] = {}
        self._guards_lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._sessions_lock = threading.Lock()

    def _guard_for(self, shortcut_id: str) -> threading.Lock:
        with self._guards_lock:
            guard = self._guards.get(shortcut_id)
            if guard is None:
                guard = self._guards[shortcut_id] = threading.Lock()
            return guard

    def _remember(self, session: Session) -> Session:
        with self._sessions_lock:
            self._sessions[session.shortcut_id] = session
        return session

    def _forget(self, shortcut_id: str) -> None:
        with self._sessions_lock:
            self._sessions.pop(shortcut_id, None)

    def _wrap_existing(self, shortcut: Shortcut, name: str) -> Session:
        with self._sessions_lock:
            known = self._sessions.get(shortcut.id)
        if known is not None and known.tmux_session_name == name:
            return known
        cwd = self._tmux.session_directory(name) or shortcut.project_path
        return self._remember(Session(shortcut_id=shortcut.id, tmux_session_name=name, working_directory=cwd))

    def find_or_create_for_shortcut(self, shortcut: Shortcut) -> Session:
        """Return the live session for a shortcut, creating it if absent.

        Raises WorktreeCreationError before touching tmux if the working
        directory cannot be provisioned, SessionCreateConflict if the session
        appeared out of band during creation, and MultiplexerTimeoutError /
        MultiplexerError for tmux failures.
        """
        name = session_name_for(shortcut.id)
        if self._tmux.has_session(name):
            return self._wrap_existing(shortcut, name)

        with self._guard_for(shortcut.id):
            # Another caller may have finished creating it while we waited.
            if self._tmux.has_session(name):
                return self._wrap_existing(shortcut, name)

            worktree = self._provision(shortcut, self._config)
            command = build_command(shortcut, self._config)
            self._tmux.create_session(name, worktree.path, command)

        logger.info(
            "Launched shortcut",
            extra={"shortcut": shortcut.key, "session": name, "tool": shortcut.tool.value, "cwd": worktree.path},
        )
        return self._remember(
            Session(
                shortcut_id=shortcut.id,
                tmux_session_name=name,
                working_directory=worktree.path,
                branch=worktree.branch,
                status=SessionStatus.RUNNING,
            )
        )

    def find_or_create_with_retry(self, shortcut: Shortcut) -> Session:
        """Like find_or_create_for_shortcut, running the whole lookup once more on a conflict."""
        try:
            return self.find_or_create_for_shortcut(shortcut)
        except SessionCreateConflict:
            logger.info("Session appeared during creation, retrying", extra={"shortcut": shortcut.key})
            return self.find_or_create_for_shortcut(shortcut)

    def get(self, shortcut_id: str) -> Session | None:
        with self._sessions_lock:
            return self._sessions.get(shortcut_id)

    def live_sessions(self) -> list[Session]:
        with self._sessions_lock:
            return list(self._sessions.values())

    def status_for(self, shortcut: Shortcut) -> SessionStatus:
        """Classify one shortcut's session. Blocks on tmux; errors propagate."""
        name = session_name_for(shortcut.id)
        pid = self._tmux.pane_pid(name)
        if pid is None:
            self._forget(shortcut.id)
            return SessionStatus.STOPPED

        text = visible_text(self._tmux.capture_pane(name), self._config.capture_lines)
        status = classify(shortcut.tool, text, process_alive=True)
        session = self._wrap_existing(shortcut, name)
        self._remember(session.model_copy(update={"status": status, "pane_pid": pid}))
        return status

    def refresh_statuses(self, shortcuts: Iterable[Shortcut]) -> dict[str, SessionStatus]:
        """Poll every shortcut concurrently. A failing session is marked error without affecting the rest."""
        shortcuts = list(shortcuts)
        if not shortcuts:
            return {}

        results: dict[str, SessionStatus] = {}
        workers = min(self._poll_workers, len(shortcuts))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="poll") as pool:
            futures = {pool.submit(self.status_for, s): s for s in shortcuts}
            for future in concurrent.futures.as_completed(futures):
                shortcut = futures[future]
                try:
                    results[shortcut.id] = future.result()
                except MultiplexerError as e:
                    logger.warning("Status poll failed", extra={"shortcut": shortcut.key, "error": str(e)})
                    results[shortcut.id] = SessionStatus.ERROR
        return results

    def kill(self, shortcut: Shortcut) -> None:
        self._tmux.kill_session(session_name_for(shortcut.id))
        self._forget(shortcut.id)
