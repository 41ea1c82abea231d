"""删除操作单元测试（本地对象存储）。"""

import threading

import pytest

from app.packages.sharebox.core.exceptions import NotFoundError, StorageUnavailableError
from app.packages.sharebox.services.entry_operations import delete_entry, plan_delete
from app.packages.sharebox.services.entry_tree import Entry, EntryTree, RoomSnapshot
from app.packages.sharebox.services.storage_actions import ActionKind
from app.packages.sharebox.services.storage_backends import LocalBackend

TS = "2024-01-01T00:00:00+00:00"


class FlakyBackend(LocalBackend):
    """对指定 key/前缀的删除始终失败。"""

    def __init__(self, root, *, broken: set[str]):
        super().__init__(root)
        self.broken = broken

    def delete_object(self, *, key):
        if key in self.broken:
            raise StorageUnavailableError(f"boom: {key}")
        super().delete_object(key=key)

    def delete_prefix(self, *, prefix, page_size=1000):
        if prefix in self.broken:
            raise StorageUnavailableError(f"boom: {prefix}")
        return super().delete_prefix(prefix=prefix, page_size=page_size)


def _file(id, name, parent_id, key):
    return Entry.file(id=id, name=name, parent_id=parent_id, timestamp=TS, size=1, mime_type="text/plain", storage_key=key)


def _snapshot(cursor=None) -> RoomSnapshot:
    tree = EntryTree(
        [
            Entry.folder(id="g1", name="docs", parent_id=None, timestamp=TS),
            Entry.folder(id="g2", name="drafts", parent_id="g1", timestamp=TS),
            _file("f1", "f1.txt", None, "demo/f1.txt"),
            _file("f2", "f2.txt", "g1", "demo/docs/f2.txt"),
            _file("f3", "f3.txt", "g2", "demo/docs/drafts/f3.txt"),
            _file("f4", "f4.txt", "g2", "demo/docs/drafts/f4.txt"),
        ]
    )
    return RoomSnapshot(name="demo", current_folder_id=cursor, tree=tree)


def _seed(store):
    for key in ("demo/f1.txt", "demo/docs/f2.txt", "demo/docs/drafts/f3.txt", "demo/docs/drafts/f4.txt"):
        store.put_object(key=key, data=b"x")


def _keys(store, prefix="demo/"):
    return sorted(obj.key for obj in store.iter_objects(prefix=prefix))


def test_delete_folder_removes_whole_subtree(tmp_path):
    store = LocalBackend(tmp_path)
    _seed(store)
    snapshot = _snapshot(cursor="g2")

    report = delete_entry(snapshot, "g1", store=store)

    assert set(report.removed_ids) == {"g1", "g2", "f2", "f3", "f4"}
    assert [e.id for e in snapshot.tree] == ["f1"]
    assert snapshot.current_folder_id is None
    assert report.cursor_reset is True
    assert report.failures == []
    assert _keys(store) == ["demo/f1.txt"]
    assert snapshot.tree.find_violations(snapshot.current_folder_id) == []


def test_nested_prefixes_collapse_into_outermost(tmp_path):
    _, actions = plan_delete(_snapshot(), "g1")
    assert [(a.kind, a.key) for a in actions] == [(ActionKind.DELETE_PREFIX, "demo/docs/")]


def test_deleting_last_file_writes_keep_marker(tmp_path):
    store = LocalBackend(tmp_path)
    _seed(store)
    snapshot = _snapshot()

    report = delete_entry(snapshot, "f2", store=store)

    assert report.removed_ids == ["f2"]
    assert "demo/docs/.keep" in _keys(store)
    assert "demo/docs/f2.txt" not in _keys(store)
    assert snapshot.current_folder_id is None


def test_no_marker_while_sibling_files_remain(tmp_path):
    store = LocalBackend(tmp_path)
    _seed(store)
    snapshot = _snapshot()

    delete_entry(snapshot, "f3", store=store)

    keys = _keys(store)
    assert "demo/docs/drafts/f4.txt" in keys
    assert "demo/docs/drafts/.keep" not in keys


def test_root_file_needs_no_marker(tmp_path):
    store = LocalBackend(tmp_path)
    _seed(store)
    _, actions = plan_delete(_snapshot(), "f1")
    assert [a.kind for a in actions] == [ActionKind.DELETE]


def test_storage_failures_do_not_block_metadata(tmp_path):
    store = FlakyBackend(tmp_path, broken={"demo/f1.txt"})
    _seed(store)
    snapshot = _snapshot()

    report = delete_entry(snapshot, "f1", store=store)

    assert report.removed_ids == ["f1"]
    assert "f1" not in snapshot.tree
    assert len(report.failures) == 1
    assert report.failures[0].action.key == "demo/f1.txt"
    assert "boom" in report.failures[0].error
    # 对象仍在，交给同步修复
    assert "demo/f1.txt" in _keys(store)


def test_failed_prefix_delete_still_removes_entries(tmp_path):
    store = FlakyBackend(tmp_path, broken={"demo/docs/"})
    _seed(store)
    snapshot = _snapshot()

    report = delete_entry(snapshot, "g1", store=store)

    assert len(report.removed_ids) == 5
    assert report.to_dict()["failed"] == 1


def test_unknown_entry_fails_before_any_storage_call(tmp_path):
    store = LocalBackend(tmp_path)
    _seed(store)
    snapshot = _snapshot()

    with pytest.raises(NotFoundError):
        delete_entry(snapshot, "nope", store=store)
    assert len(snapshot.tree) == 6
    assert len(_keys(store)) == 4


def test_orphaned_folder_skips_prefix_delete(tmp_path):
    store = LocalBackend(tmp_path)
    snapshot = RoomSnapshot(
        name="demo",
        current_folder_id=None,
        tree=EntryTree([Entry.folder(id="lost", name="lost", parent_id="ghost", timestamp=TS)]),
    )
    report = delete_entry(snapshot, "lost", store=store)
    assert report.removed_ids == ["lost"]
    assert report.results == []


class StalledBackend(LocalBackend):
    """删除调用阻塞，直到测试放行。"""

    def __init__(self, root):
        super().__init__(root)
        self.gate = threading.Event()

    def delete_object(self, *, key):
        self.gate.wait(5)
        super().delete_object(key=key)


def test_deadline_exceeded_leaves_metadata_untouched(tmp_path):
    store = StalledBackend(tmp_path)
    _seed(store)
    snapshot = _snapshot()

    try:
        with pytest.raises(StorageUnavailableError):
            delete_entry(snapshot, "f1", store=store, timeout=0.1)
        assert "f1" in snapshot.tree
        assert len(snapshot.tree) == 6
    finally:
        store.gate.set()
