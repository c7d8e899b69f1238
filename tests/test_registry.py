from unittest.mock import MagicMock

import pytest

from agent_orchestrator.constants import RESERVED_SHORTCUT_KEYS
from agent_orchestrator.errors import ValidationError
from agent_orchestrator.models import Tool
from agent_orchestrator.services.registry import (
    KeyCheck,
    move_shortcut,
    new_shortcut,
    next_order,
    shortcuts_in_group,
    validate_group_name,
    validate_key,
    validate_shortcut,
)


class TestValidateKey:
    @pytest.mark.parametrize("key", list("hjklndrfgmqRFS") + [str(i) for i in range(1, 10)])
    def test_reserved_keys_rejected(self, key):
        assert key in RESERVED_SHORTCUT_KEYS
        assert validate_key(key, []) is KeyCheck.RESERVED

    @pytest.mark.parametrize("key", ["a", "b", "c", "w", "x", "z"])
    def test_usable_keys_accepted(self, key):
        assert key not in RESERVED_SHORTCUT_KEYS
        assert validate_key(key, []) is KeyCheck.OK

    def test_duplicate_rejected(self, make_shortcut):
        existing = [make_shortcut(id="1", key="x")]
        assert validate_key("x", existing) is KeyCheck.DUPLICATE

    def test_editing_keeps_own_key(self, make_shortcut):
        existing = [make_shortcut(id="1", key="x")]
        assert validate_key("x", existing, editing_id="1") is KeyCheck.OK

    @pytest.mark.parametrize("key,expected", [
        ("", KeyCheck.EMPTY),
        ("abc", KeyCheck.INVALID),
        (" a", KeyCheck.INVALID),
        ("\t", KeyCheck.INVALID),
        ("ab", KeyCheck.OK),
        ("jx", KeyCheck.OK),
    ])
    def test_shape(self, key, expected):
        assert validate_key(key, []) is expected


class TestOrdering:
    def test_next_order_empty_group(self, make_shortcut):
        assert next_order([make_shortcut(group_path="other", order=5)], "work") == 0

    def test_next_order_is_max_plus_one(self, make_shortcut):
        shortcuts = [
            make_shortcut(id="1", key="a", group_path="work", order=2),
            make_shortcut(id="2", key="b", group_path="work", order=7),
            make_shortcut(id="3", key="c", group_path="", order=40),
        ]
        assert next_order(shortcuts, "work") == 8
        assert next_order(shortcuts, "") == 41

    def test_shortcuts_in_group_sorted(self, make_shortcut):
        shortcuts = [
            make_shortcut(id="1", key="a", group_path="g", order=2),
            make_shortcut(id="2", key="b", group_path="g", order=0),
            make_shortcut(id="3", key="c", group_path="", order=1),
        ]
        assert [s.id for s in shortcuts_in_group(shortcuts, "g")] == ["2", "1"]

    def test_move_shortcut_swaps_with_neighbour(self, storage, make_shortcut):
        for i, key in enumerate("abc"):
            storage.save_shortcut(make_shortcut(id=key, key=key, order=i))

        assert move_shortcut(storage, "c", -1) is True

        assert [s.id for s in storage.load_shortcuts()] == ["a", "c", "b"]

    def test_move_shortcut_writes_orders_once(self, storage, make_shortcut, monkeypatch):
        for i, key in enumerate("abc"):
            storage.save_shortcut(make_shortcut(id=key, key=key, order=i))
        set_orders = MagicMock(wraps=storage.set_orders)
        monkeypatch.setattr(storage, "set_orders", set_orders)

        move_shortcut(storage, "c", -1)

        set_orders.assert_called_once_with({"c": 1, "b": 2})

    def test_move_shortcut_at_edge(self, storage, make_shortcut):
        storage.save_shortcut(make_shortcut(id="a", key="a", order=0))
        storage.save_shortcut(make_shortcut(id="b", key="b", order=1))
        assert move_shortcut(storage, "a", -1) is False
        assert move_shortcut(storage, "b", 1) is False
        assert move_shortcut(storage, "missing", 1) is False

    def test_move_stays_within_group(self, storage, make_shortcut):
        storage.save_shortcut(make_shortcut(id="a", key="a", group_path="g", order=0))
        storage.save_shortcut(make_shortcut(id="b", key="b", group_path="", order=1))
        assert move_shortcut(storage, "a", 1) is False


class TestValidateShortcut:
    def test_valid(self, make_shortcut):
        validate_shortcut(make_shortcut(), [])

    @pytest.mark.parametrize("overrides,message", [
        ({"key": "q"}, "reserved"),
        ({"name": "  "}, "Name is required"),
        ({"project_path": ""}, "Project path is required"),
        ({"project_path": "relative/dir"}, "absolute"),
        ({"tool": Tool.CUSTOM, "cli_options": ""}, "Custom tool"),
    ])
    def test_invalid(self, make_shortcut, overrides, message):
        with pytest.raises(ValidationError, match=message):
            validate_shortcut(make_shortcut(**overrides), [])

    def test_duplicate_message(self, make_shortcut):
        with pytest.raises(ValidationError, match="already in use"):
            validate_shortcut(make_shortcut(id="new"), [make_shortcut(id="old")])


class TestNewShortcut:
    def test_builds_with_fresh_id_and_order(self, make_shortcut):
        existing = [make_shortcut(id="1", key="a", order=4)]
        s1 = new_shortcut("x", " API ", "/srv/api", existing)
        s2 = new_shortcut("y", "Web", "/srv/web", existing)
        assert s1.id != s2.id
        assert s1.name == "API"
        assert s1.order == 5

    def test_skip_permissions_only_for_claude(self):
        s = new_shortcut("x", "Gem", "/srv", [], tool=Tool.GEMINI, skip_permissions=True)
        assert s.skip_permissions is False

    def test_worktree_fields_ignored_without_worktree(self):
        s = new_shortcut("x", "A", "/srv", [], worktree_branch="feat", use_base_develop=True)
        assert s.worktree_branch == ""
        assert s.use_base_develop is False

    def test_rejects_reserved(self):
        with pytest.raises(ValidationError):
            new_shortcut("j", "A", "/srv", [])


class TestValidateGroupName:
    def test_trims(self):
        assert validate_group_name("  work ") == "work"

    @pytest.mark.parametrize("name,message", [
        ("", "empty"),
        ("a/b", "cannot contain /"),
        ("x" * 51, "too long"),
    ])
    def test_invalid(self, name, message):
        with pytest.raises(ValidationError, match=message):
            validate_group_name(name)
