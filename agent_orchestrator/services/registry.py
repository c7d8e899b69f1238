"""Naming and ordering rules for shortcuts and groups.

Pure functions over lists of records; persistence stays in `Storage`.
"""

from enum import Enum
from os.path import isabs
from typing import Iterable

from agent_orchestrator.constants import MAX_GROUP_NAME_LENGTH, MAX_KEY_LENGTH, RESERVED_SHORTCUT_KEYS
from agent_orchestrator.errors import ValidationError
from agent_orchestrator.models import Shortcut, Tool
from agent_orchestrator.services.storage import Storage


class KeyCheck(Enum):
    OK = "ok"
    EMPTY = "empty"
    INVALID = "invalid"
    RESERVED = "reserved"
    DUPLICATE = "duplicate"


_KEY_MESSAGES = {
    KeyCheck.EMPTY: "Key is required",
    KeyCheck.INVALID: f"Key must be 1-{MAX_KEY_LENGTH} printable characters",
    KeyCheck.RESERVED: 'Key "{key}" is reserved',
    KeyCheck.DUPLICATE: 'Key "{key}" is already in use',
}


def validate_key(key: str, existing: Iterable[Shortcut], editing_id: str | None = None) -> KeyCheck:
    """Check a key against the reserved set and the keys already taken.

    `editing_id` names the shortcut being edited, which may keep its own key.
    """
    if not key:
        return KeyCheck.EMPTY
    if len(key) > MAX_KEY_LENGTH or not key.isprintable() or key != key.strip():
        return KeyCheck.INVALID
    if key in RESERVED_SHORTCUT_KEYS:
        return KeyCheck.RESERVED
    if any(s.key == key and s.id != editing_id for s in existing):
        return KeyCheck.DUPLICATE
    return KeyCheck.OK


def shortcuts_in_group(shortcuts: Iterable[Shortcut], group_path: str) -> list[Shortcut]:
    members = [s for s in shortcuts if s.group_path == group_path]
    return sorted(members, key=lambda s: (s.order, s.created_at))


def next_order(shortcuts: Iterable[Shortcut], group_path: str) -> int:
    orders = [s.order for s in shortcuts if s.group_path == group_path]
    return max(orders) + 1 if orders else 0


def validate_shortcut(shortcut: Shortcut, existing: Iterable[Shortcut], editing_id: str | None = None) -> None:
    """Raise ValidationError with a user-facing message if the shortcut is unusable."""
    check = validate_key(shortcut.key, existing, editing_id=editing_id)
    if check is not KeyCheck.OK:
        raise ValidationError(_KEY_MESSAGES[check].format(key=shortcut.key))
    if not shortcut.name.strip():
        raise ValidationError("Name is required")
    if not shortcut.project_path.strip():
        raise ValidationError("Project path is required")
    if not isabs(shortcut.project_path):
        raise ValidationError(f"Project path must be absolute: {shortcut.project_path}")
    if shortcut.tool is Tool.CUSTOM and not shortcut.cli_options.strip():
        raise ValidationError("Custom tool needs a command in CLI options")


def validate_group_name(name: str) -> str:
    """Return the trimmed group name or raise ValidationError."""
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("Name cannot be empty")
    if "/" in trimmed:
        raise ValidationError("Name cannot contain /")
    if len(trimmed) > MAX_GROUP_NAME_LENGTH:
        raise ValidationError(f"Name is too long (max {MAX_GROUP_NAME_LENGTH} characters)")
    return trimmed


def new_shortcut(
    key: str,
    name: str,
    project_path: str,
    existing: list[Shortcut],
    tool: Tool = Tool.CLAUDE,
    cli_options: str = "",
    group_path: str = "",
    skip_permissions: bool = False,
    use_worktree: bool = False,
    worktree_branch: str = "",
    use_base_develop: bool = False,
) -> Shortcut:
    """Build a validated shortcut with a fresh id, placed last in its group."""
    shortcut = Shortcut(
        key=key.strip(),
        name=name.strip(),
        project_path=project_path.strip(),
        tool=tool,
        cli_options=cli_options.strip(),
        group_path=group_path.strip("/"),
        # Only claude understands the flag.
        skip_permissions=skip_permissions and tool is Tool.CLAUDE,
        use_worktree=use_worktree,
        worktree_branch=worktree_branch.strip() if use_worktree else "",
        use_base_develop=use_base_develop and use_worktree,
        order=next_order(existing, group_path.strip("/")),
    )
    validate_shortcut(shortcut, existing)
    return shortcut


def move_shortcut(storage: Storage, shortcut_id: str, offset: int) -> bool:
    """Swap a shortcut with its neighbour `offset` places away in the same group.

    Returns False when the shortcut is missing or already at the edge.
    """
    shortcut = storage.get_shortcut(shortcut_id)
    if shortcut is None:
        return False
    siblings = shortcuts_in_group(storage.load_shortcuts(), shortcut.group_path)
    index = next(i for i, s in enumerate(siblings) if s.id == shortcut_id)
    target = index + offset
    if not 0 <= target < len(siblings):
        return False

    # Renumber so duplicate orders left by older writes still swap cleanly.
    siblings[index], siblings[target] = siblings[target], siblings[index]
    storage.set_orders({s.id: position for position, s in enumerate(siblings) if s.order != position})
    return True
