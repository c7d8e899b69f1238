"""tmux control surface.

`TmuxAdapter` keeps no session state of its own; every call asks tmux.
Each call runs on its own daemon thread and is bounded by a timeout. A
timed-out call is reported, never retried here, and its thread is abandoned.
"""

import concurrent.futures
import logging
import os
import re
import shlex
import threading
from typing import Callable, TypeVar

import libtmux
from libtmux import exc as tmux_exc

from agent_orchestrator.constants import TMUX_SESSION_PREFIX, TMUX_TIMEOUT_S
from agent_orchestrator.errors import MultiplexerError, MultiplexerTimeoutError, SessionCreateConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def session_name_for(shortcut_id: str) -> str:
    """tmux session name for a shortcut. Depends only on the id, so key renames keep the session."""
    return f"{TMUX_SESSION_PREFIX}-{_UNSAFE_NAME_CHARS.sub('_', shortcut_id)}"


def attach_argv(session_name: str) -> list[str]:
    """Command that puts the user's terminal on the session."""
    target = f"={session_name}"
    if os.environ.get("TMUX"):
        return ["tmux", "switch-client", "-t", target]
    return ["tmux", "attach-session", "-t", target]


class TmuxAdapter:
    def __init__(self, timeout: float = TMUX_TIMEOUT_S) -> None:
        self.timeout = timeout
        self._server: libtmux.Server | None = None

    @property
    def server(self) -> libtmux.Server:
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    def _call(self, operation: str, session_name: str, fn: Callable[..., T], *args) -> T:
        future: concurrent.futures.Future = concurrent.futures.Future()

        def _run() -> None:
            future.set_running_or_notify_cancel()
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=_run, name=f"tmux-{operation}", daemon=True).start()
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as e:
            logger.warning(
                "tmux call timed out",
                extra={"operation": operation, "session": session_name, "timeout": self.timeout},
            )
            raise MultiplexerTimeoutError(session_name, operation, self.timeout) from e
        except tmux_exc.TmuxSessionExists as e:
            raise SessionCreateConflict(session_name) from e
        except tmux_exc.LibTmuxException as e:
            raise MultiplexerError(session_name, f"tmux {operation} failed for '{session_name}': {e}") from e

    def _find(self, session_name: str) -> libtmux.Session | None:
        matches = self.server.sessions.filter(session_name=session_name)
        return matches[0] if matches else None

    def has_session(self, session_name: str) -> bool:
        return self._call("has-session", session_name, self.server.has_session, session_name)

    def create_session(self, session_name: str, working_directory: str, command: str | None) -> None:
        """Start a detached session. Raises SessionCreateConflict if the name is taken."""
        window_command = None
        if command:
            env = f"AV_SHORTCUT_SESSION={shlex.quote(session_name)} TERM=xterm-256color"
            window_command = f"env {env} {command}"

        def _create() -> None:
            self.server.new_session(
                session_name=session_name,
                start_directory=working_directory,
                window_command=window_command,
                attach=False,
                kill_session=False,
            )

        self._call("new-session", session_name, _create)
        logger.info(
            "Created tmux session",
            extra={"session": session_name, "cwd": working_directory, "command": command},
        )

    def capture_pane(self, session_name: str) -> str:
        """Visible content of the active pane, or "" if the session is gone."""

        def _capture() -> str:
            session = self._find(session_name)
            if session is None:
                return ""
            return "\n".join(session.active_pane.capture_pane())

        return self._call("capture-pane", session_name, _capture)

    def pane_pid(self, session_name: str) -> int | None:
        """PID of the active pane's process, or None when the session or process is gone."""

        def _pid() -> int | None:
            session = self._find(session_name)
            if session is None:
                return None
            pane = session.active_pane
            if pane is None or pane.pane_dead == "1" or not pane.pane_pid:
                return None
            return int(pane.pane_pid)

        return self._call("list-panes", session_name, _pid)

    def is_alive(self, session_name: str) -> bool:
        return self.pane_pid(session_name) is not None

    def session_directory(self, session_name: str) -> str | None:
        def _path() -> str | None:
            session = self._find(session_name)
            if session is None or session.active_pane is None:
                return None
            return session.active_pane.pane_current_path

        return self._call("display", session_name, _path)

    def send_keys(self, session_name: str, text: str, enter: bool = False, literal: bool = True) -> None:
        def _send() -> None:
            session = self._find(session_name)
            if session is None:
                raise MultiplexerError(session_name, f"tmux session '{session_name}' not found")
            session.active_pane.send_keys(text, enter=enter, literal=literal)

        self._call("send-keys", session_name, _send)

    def kill_session(self, session_name: str) -> None:
        """Kill a session. A session that is already gone is not an error."""

        def _kill() -> bool:
            session = self._find(session_name)
            if session is None:
                return False
            session.kill()
            return True

        if self._call("kill-session", session_name, _kill):
            logger.info("Killed tmux session", extra={"session": session_name})
        else:
            logger.debug("tmux session already gone", extra={"session": session_name})

    def attach(self, session_name: str) -> None:
        """Replace the current process with a tmux client on the session. Does not return."""
        argv = attach_argv(session_name)
        logger.debug("Attaching", extra={"session": session_name, "argv": argv})
        os.execvp(argv[0], argv)
