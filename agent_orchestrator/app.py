import asyncio
import logging
import subprocess
from typing import TYPE_CHECKING

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import DataTable, Footer, Header, Static

from agent_orchestrator.constants import RESERVED_SHORTCUT_KEYS
from agent_orchestrator.errors import OrchestratorError
from agent_orchestrator.models import STATUS_ICONS, Shortcut
from agent_orchestrator.services.sync import Snapshot
from agent_orchestrator.services.tmux import attach_argv

if TYPE_CHECKING:
    from agent_orchestrator.cli import Services

logger = logging.getLogger(__name__)


class AgentOrchestratorApp(App):
    """Shortcut picker: press a shortcut's key to jump into its session."""

    TITLE = "Agent Orchestrator"

    DEFAULT_CSS = """
    #shortcuts {
        height: 1fr;
    }
    #empty-state {
        width: 100%;
        height: 100%;
        content-align: center middle;
        text-style: italic;
        color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
        Binding("d", "kill_selected", "Kill Session"),
        Binding("r", "refresh", "Refresh"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, services: "Services") -> None:
        super().__init__()
        self._services = services
        self._pending_key = ""
        self._launching: set[str] = set()

    def compose(self) -> ComposeResult:
        yield Header()
        yield DataTable(id="shortcuts", cursor_type="row", zebra_stripes=True)
        yield Static("No shortcuts. Add one with `av add KEY NAME [PATH]`.", id="empty-state")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#shortcuts", DataTable)
        table.add_columns("", "Key", "Name", "Tool", "Group", "Path")
        self._show_snapshot(self._services.sync.refresh(poll=False))
        self.action_refresh()
        self.set_interval(self._services.config.poll_interval_s, self.action_refresh)

    # -- read model ---------------------------------------------------------

    def action_refresh(self) -> None:
        """Kick off a background refresh so tmux polling never blocks the UI."""
        self.run_worker(self._do_refresh, exclusive=True, group="refresh")

    async def _do_refresh(self) -> None:
        try:
            snapshot = await asyncio.to_thread(self._services.sync.refresh)
        except OrchestratorError as e:
            self.notify(str(e), severity="error")
            return
        self._show_snapshot(snapshot)

    def _show_snapshot(self, snapshot: Snapshot) -> None:
        table = self.query_one("#shortcuts", DataTable)
        cursor = table.cursor_row
        table.clear()
        ordered = sorted(snapshot.shortcuts, key=lambda s: (s.group_path, s.order))
        for s in ordered:
            table.add_row(
                STATUS_ICONS[snapshot.status_of(s.id)],
                f"[{s.key}]",
                s.name,
                s.tool.value,
                s.group_path,
                s.project_path,
                key=s.id,
            )
        if ordered:
            table.move_cursor(row=min(cursor, len(ordered) - 1))
        table.display = bool(ordered)
        self.query_one("#empty-state", Static).display = not ordered

    def _selected(self) -> Shortcut | None:
        table = self.query_one("#shortcuts", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return self._services.sync.snapshot().by_id(row_key.value)

    # -- keys ---------------------------------------------------------------

    def on_key(self, event: events.Key) -> None:
        char = event.character
        if not char or not char.isprintable():
            return
        snapshot = self._services.sync.snapshot()
        typed = self._pending_key + char
        # A lone reserved key keeps its binding but can still open a two-character key.
        reserved = not self._pending_key and char in RESERVED_SHORTCUT_KEYS
        shortcut = None if reserved else snapshot.by_key(typed)
        if shortcut is not None:
            self._pending_key = ""
            event.stop()
            event.prevent_default()
            self.launch(shortcut)
            return
        if any(s.key.startswith(typed) and len(s.key) > len(typed) for s in snapshot.shortcuts):
            self._pending_key = typed
            if not reserved:
                event.stop()
                event.prevent_default()
            return
        self._pending_key = ""

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        shortcut = self._services.sync.snapshot().by_id(event.row_key.value)
        if shortcut is not None:
            self.launch(shortcut)

    def action_cursor_down(self) -> None:
        self.query_one("#shortcuts", DataTable).action_cursor_down()

    def action_cursor_up(self) -> None:
        self.query_one("#shortcuts", DataTable).action_cursor_up()

    # -- sessions -----------------------------------------------------------

    def launch(self, shortcut: Shortcut) -> None:
        if shortcut.id in self._launching:
            return
        self._launching.add(shortcut.id)

        async def _launch() -> None:
            try:
                session = await asyncio.to_thread(self._services.manager.find_or_create_with_retry, shortcut)
            except OrchestratorError as e:
                self.notify(str(e), title=f"[{shortcut.key}] {shortcut.name}", severity="error")
                return
            finally:
                self._launching.discard(shortcut.id)
            self._attach(session.tmux_session_name)
            self.action_refresh()

        self.run_worker(_launch, exclusive=False, group="launch")

    def _attach(self, session_name: str) -> None:
        logger.debug("Attaching from picker", extra={"session": session_name})
        with self.suspend():
            subprocess.run(attach_argv(session_name))

    def action_kill_selected(self) -> None:
        shortcut = self._selected()
        if shortcut is None:
            return

        async def _kill() -> None:
            try:
                await asyncio.to_thread(self._services.manager.kill, shortcut)
            except OrchestratorError as e:
                self.notify(str(e), severity="error")
                return
            self.notify(f"Killed session for [{shortcut.key}]")
            await self._do_refresh()

        self.run_worker(_kill, exclusive=False, group="kill")
