"""Pull-based read model for the UI.

Callers read `snapshot()` and call `refresh()` after anything that changes
storage or sessions. The mutating helpers here refresh on their own.
"""

import logging
import threading
from types import MappingProxyType
from typing import Mapping, NamedTuple

from agent_orchestrator.errors import ValidationError
from agent_orchestrator.models import Group, SessionStatus, Shortcut
from agent_orchestrator.services.registry import validate_group_name
from agent_orchestrator.services.session import SessionManager
from agent_orchestrator.services.storage import Storage

logger = logging.getLogger(__name__)


class Snapshot(NamedTuple):
    shortcuts: tuple[Shortcut, ...] = ()
    groups: tuple[Group, ...] = ()
    statuses: Mapping[str, SessionStatus] = MappingProxyType({})

    def status_of(self, shortcut_id: str) -> SessionStatus:
        return self.statuses.get(shortcut_id, SessionStatus.STOPPED)

    def by_key(self, key: str) -> Shortcut | None:
        return next((s for s in self.shortcuts if s.key == key), None)

    def by_id(self, shortcut_id: str) -> Shortcut | None:
        return next((s for s in self.shortcuts if s.id == shortcut_id), None)


class SyncLayer:
    def __init__(self, storage: Storage, manager: SessionManager) -> None:
        self._storage = storage
        self._manager = manager
        self._snapshot = Snapshot()
        self._lock = threading.Lock()

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    def refresh(self, poll: bool = True) -> Snapshot:
        """Re-read storage and, unless `poll` is False, re-classify every session."""
        shortcuts = tuple(self._storage.load_shortcuts())
        groups = tuple(self._storage.load_groups())
        if poll:
            statuses = self._manager.refresh_statuses(shortcuts)
        else:
            known = self.snapshot().statuses
            statuses = {s.id: known[s.id] for s in shortcuts if s.id in known}
        snapshot = Snapshot(shortcuts=shortcuts, groups=groups, statuses=MappingProxyType(statuses))
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def save_shortcut(self, shortcut: Shortcut) -> None:
        self._storage.save_shortcut(shortcut)
        self.refresh(poll=False)

    def delete_shortcut(self, shortcut: Shortcut) -> None:
        """Kill the shortcut's session (if any) and delete the record."""
        self._manager.kill(shortcut)
        self._storage.delete_shortcut(shortcut.id)
        self.refresh(poll=False)

    def create_group(self, name: str, parent: str = "") -> Group:
        name = validate_group_name(name)
        parent = parent.strip("/")
        group = Group.from_path(f"{parent}/{name}" if parent else name)
        if self._storage.get_group(group.path) is not None:
            raise ValidationError(f'Group "{group.path}" already exists')
        self._storage.save_group(group)
        self.refresh(poll=False)
        return group

    def rename_group(self, path: str, new_name: str) -> Group:
        new_name = validate_group_name(new_name)
        group = self._storage.get_group(path)
        if group is None:
            raise ValidationError(f'Group "{path}" not found')
        if new_name == group.name:
            return group
        target = f"{group.parent_path}/{new_name}" if group.parent_path else new_name
        if self._storage.get_group(target) is not None:
            raise ValidationError(f'Group "{target}" already exists')
        renamed = self._storage.rename_group(path, new_name)
        self.refresh(poll=False)
        return renamed

    def delete_group(self, path: str) -> None:
        self._storage.delete_group(path)
        self.refresh(poll=False)
