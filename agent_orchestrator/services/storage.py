"""SQLite persistence for shortcuts and groups.

One connection per process, shared across threads and serialized by a
lock. Every call commits before it returns.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from agent_orchestrator.errors import StorageError
from agent_orchestrator.models import Group, Shortcut

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS shortcuts (
        id TEXT PRIMARY KEY,
        key TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        project_path TEXT NOT NULL,
        tool TEXT NOT NULL,
        cli_options TEXT NOT NULL DEFAULT '',
        group_path TEXT NOT NULL DEFAULT '',
        skip_permissions INTEGER NOT NULL DEFAULT 0,
        use_worktree INTEGER NOT NULL DEFAULT 0,
        worktree_branch TEXT NOT NULL DEFAULT '',
        use_base_develop INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groups (
        path TEXT PRIMARY KEY,
        name TEXT NOT NULL
    )
    """,
)

_SHORTCUT_COLUMNS = (
    "id", "key", "name", "project_path", "tool", "cli_options", "group_path",
    "skip_permissions", "use_worktree", "worktree_branch", "use_base_develop",
    "created_at", "sort_order",
)
_SELECT_SHORTCUTS = f"SELECT {', '.join(_SHORTCUT_COLUMNS)} FROM shortcuts"


def _row_to_shortcut(row: sqlite3.Row) -> Shortcut:
    data = dict(row)
    data["order"] = data.pop("sort_order")
    data["created_at"] = datetime.fromisoformat(data["created_at"])
    return Shortcut.model_validate(data)


def _shortcut_to_row(shortcut: Shortcut) -> tuple:
    return (
        shortcut.id,
        shortcut.key,
        shortcut.name,
        shortcut.project_path,
        shortcut.tool.value,
        shortcut.cli_options,
        shortcut.group_path,
        int(shortcut.skip_permissions),
        int(shortcut.use_worktree),
        shortcut.worktree_branch,
        int(shortcut.use_base_develop),
        shortcut.created_at.isoformat(),
        shortcut.order,
    )


def _subtree(column: str, path: str) -> tuple[str, tuple]:
    """WHERE clause matching `path` and everything nested under it."""
    prefix = f"{path}/"
    return f"({column} = ? OR substr({column}, 1, ?) = ?)", (path, len(prefix), prefix)


def _rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    if path == old_prefix:
        return new_prefix
    return new_prefix + path[len(old_prefix):]


class Storage:
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cursor = self._conn.cursor()
            try:
                yield cursor
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(str(e)) from e
            finally:
                cursor.close()

    def migrate(self) -> None:
        """Create tables if absent. Safe to call on every launch."""
        with self._transaction() as cur:
            for statement in _SCHEMA:
                cur.execute(statement)
        logger.debug("Storage migrated", extra={"db_path": str(self.db_path)})

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- shortcuts ---------------------------------------------------------

    def save_shortcut(self, shortcut: Shortcut) -> None:
        """Upsert by id. A different row holding the same key is replaced."""
        placeholders = ", ".join("?" for _ in _SHORTCUT_COLUMNS)
        with self._transaction() as cur:
            cur.execute(
                f"INSERT OR REPLACE INTO shortcuts ({', '.join(_SHORTCUT_COLUMNS)}) VALUES ({placeholders})",
                _shortcut_to_row(shortcut),
            )

    def load_shortcuts(self) -> list[Shortcut]:
        with self._transaction() as cur:
            rows = cur.execute(f"{_SELECT_SHORTCUTS} ORDER BY sort_order, created_at").fetchall()
        return [_row_to_shortcut(r) for r in rows]

    def get_shortcut(self, shortcut_id: str) -> Shortcut | None:
        with self._transaction() as cur:
            row = cur.execute(f"{_SELECT_SHORTCUTS} WHERE id = ?", (shortcut_id,)).fetchone()
        return _row_to_shortcut(row) if row else None

    def get_shortcut_by_key(self, key: str) -> Shortcut | None:
        with self._transaction() as cur:
            row = cur.execute(f"{_SELECT_SHORTCUTS} WHERE key = ?", (key,)).fetchone()
        return _row_to_shortcut(row) if row else None

    def delete_shortcut(self, shortcut_id: str) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM shortcuts WHERE id = ?", (shortcut_id,))

    def set_orders(self, orders: dict[str, int]) -> None:
        """Rewrite `order` for several shortcuts at once; all or nothing."""
        with self._transaction() as cur:
            for shortcut_id, order in orders.items():
                cur.execute("UPDATE shortcuts SET sort_order = ? WHERE id = ?", (order, shortcut_id))

    # -- groups ------------------------------------------------------------

    def save_group(self, group: Group) -> None:
        with self._transaction() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO groups (path, name) VALUES (?, ?)",
                (group.path, group.name),
            )

    def load_groups(self) -> list[Group]:
        with self._transaction() as cur:
            rows = cur.execute("SELECT path, name FROM groups ORDER BY path").fetchall()
        return [Group(path=r["path"], name=r["name"]) for r in rows]

    def get_group(self, path: str) -> Group | None:
        with self._transaction() as cur:
            row = cur.execute("SELECT path, name FROM groups WHERE path = ?", (path,)).fetchone()
        return Group(path=row["path"], name=row["name"]) if row else None

    def delete_group(self, path: str) -> None:
        """Remove a group and its subgroups. Shortcuts under it become ungrouped."""
        groups_where, groups_args = _subtree("path", path)
        shortcuts_where, shortcuts_args = _subtree("group_path", path)
        with self._transaction() as cur:
            cur.execute(f"DELETE FROM groups WHERE {groups_where}", groups_args)
            cur.execute(f"UPDATE shortcuts SET group_path = '' WHERE {shortcuts_where}", shortcuts_args)

    def rename_group(self, path: str, new_name: str) -> Group:
        """Rename the last path segment, rewriting every nested group and shortcut path."""
        parent = path.rsplit("/", 1)[0] if "/" in path else ""
        new_path = f"{parent}/{new_name}" if parent else new_name
        groups_where, groups_args = _subtree("path", path)
        shortcuts_where, shortcuts_args = _subtree("group_path", path)
        with self._transaction() as cur:
            groups = cur.execute(f"SELECT path, name FROM groups WHERE {groups_where}", groups_args).fetchall()
            cur.execute(f"DELETE FROM groups WHERE {groups_where}", groups_args)
            for row in groups:
                name = new_name if row["path"] == path else row["name"]
                cur.execute(
                    "INSERT INTO groups (path, name) VALUES (?, ?)",
                    (_rebase(row["path"], path, new_path), name),
                )
            shortcuts = cur.execute(
                f"SELECT id, group_path FROM shortcuts WHERE {shortcuts_where}", shortcuts_args,
            ).fetchall()
            for row in shortcuts:
                cur.execute(
                    "UPDATE shortcuts SET group_path = ? WHERE id = ?",
                    (_rebase(row["group_path"], path, new_path), row["id"]),
                )
        logger.info("Renamed group", extra={"old_path": path, "new_path": new_path})
        return Group(path=new_path, name=new_name)
