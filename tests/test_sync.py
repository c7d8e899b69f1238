import pytest

from agent_orchestrator.errors import ValidationError
from agent_orchestrator.models import SessionStatus
from agent_orchestrator.services.sync import Snapshot


@pytest.fixture()
def sync(services):
    return services.sync


class TestSnapshot:
    def test_empty_before_refresh(self, sync):
        assert sync.snapshot() == Snapshot()

    def test_unknown_status_is_stopped(self):
        assert Snapshot().status_of("missing") is SessionStatus.STOPPED

    def test_statuses_are_read_only(self, sync, make_shortcut):
        sync.save_shortcut(make_shortcut())
        for snapshot in (Snapshot(), sync.refresh()):
            with pytest.raises(TypeError):
                snapshot.statuses["test-id"] = SessionStatus.RUNNING
        assert Snapshot().statuses == {}

    def test_lookups(self, sync, storage, make_shortcut):
        storage.save_shortcut(make_shortcut(id="1", key="a"))
        snapshot = sync.refresh(poll=False)
        assert snapshot.by_key("a").id == "1"
        assert snapshot.by_id("1").key == "a"
        assert snapshot.by_key("zz") is None


class TestRefresh:
    def test_picks_up_storage_changes(self, sync, storage, make_shortcut):
        sync.refresh()
        storage.save_shortcut(make_shortcut())

        assert sync.snapshot().shortcuts == ()
        assert [s.key for s in sync.refresh().shortcuts] == ["x"]

    def test_polls_statuses(self, services, make_shortcut):
        shortcut = make_shortcut()
        services.storage.save_shortcut(shortcut)
        services.manager.find_or_create_for_shortcut(shortcut)
        services.tmux.sessions["av-test-id"]["pane"] = "Do you want to proceed?"

        snapshot = services.sync.refresh()

        assert snapshot.status_of("test-id") is SessionStatus.WAITING

    def test_without_poll_keeps_known_statuses(self, services, make_shortcut):
        shortcut = make_shortcut()
        services.storage.save_shortcut(shortcut)
        services.manager.find_or_create_for_shortcut(shortcut)
        services.sync.refresh()
        services.tmux.sessions["av-test-id"]["alive"] = False

        assert services.sync.refresh(poll=False).status_of("test-id") is SessionStatus.RUNNING
        assert services.sync.refresh().status_of("test-id") is SessionStatus.STOPPED


class TestShortcutMutations:
    def test_save_refreshes(self, sync, make_shortcut):
        sync.save_shortcut(make_shortcut())
        assert len(sync.snapshot().shortcuts) == 1

    def test_delete_kills_session(self, services, make_shortcut):
        shortcut = make_shortcut()
        services.sync.save_shortcut(shortcut)
        services.manager.find_or_create_for_shortcut(shortcut)

        services.sync.delete_shortcut(shortcut)

        assert services.tmux.killed == ["av-test-id"]
        assert services.storage.load_shortcuts() == []
        assert services.sync.snapshot().shortcuts == ()


class TestGroups:
    def test_create_nested(self, sync):
        sync.create_group("work")
        group = sync.create_group(" api ", parent="work")
        assert group.path == "work/api"
        assert [g.path for g in sync.snapshot().groups] == ["work", "work/api"]

    def test_create_duplicate(self, sync):
        sync.create_group("work")
        with pytest.raises(ValidationError, match="already exists"):
            sync.create_group("work")

    def test_rename(self, sync, storage, make_shortcut):
        sync.create_group("work")
        storage.save_shortcut(make_shortcut(group_path="work"))

        renamed = sync.rename_group("work", "job")

        assert renamed.path == "job"
        assert sync.snapshot().shortcuts[0].group_path == "job"

    def test_rename_same_name_is_noop(self, sync):
        sync.create_group("work")
        assert sync.rename_group("work", "work").path == "work"

    def test_rename_missing(self, sync):
        with pytest.raises(ValidationError, match="not found"):
            sync.rename_group("nope", "x")

    def test_rename_onto_existing(self, sync):
        sync.create_group("a")
        sync.create_group("b")
        with pytest.raises(ValidationError, match="already exists"):
            sync.rename_group("a", "b")

    def test_delete(self, sync, storage, make_shortcut):
        sync.create_group("work")
        storage.save_shortcut(make_shortcut(group_path="work"))

        sync.delete_group("work")

        snapshot = sync.snapshot()
        assert snapshot.groups == ()
        assert snapshot.shortcuts[0].group_path == ""
