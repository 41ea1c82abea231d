"""路径解析单元测试。"""

import pytest

from app.packages.sharebox.core.exceptions import CyclicHierarchyError
from app.packages.sharebox.services.entry_tree import Entry, EntryTree
from app.packages.sharebox.services.path_resolver import PathResolver, folder_path, resolve_path

TS = "2024-01-01T00:00:00+00:00"


def _file(id: str, name: str, parent_id, key=None) -> Entry:
    return Entry.file(id=id, name=name, parent_id=parent_id, timestamp=TS, size=1, mime_type="text/plain", storage_key=key)


def _tree() -> EntryTree:
    return EntryTree(
        [
            Entry.folder(id="g1", name="docs", parent_id=None, timestamp=TS),
            Entry.folder(id="g2", name="drafts", parent_id="g1", timestamp=TS),
            _file("f1", "f1.txt", None, "demo/f1.txt"),
            _file("f2", "f2.txt", "g1", "demo/docs/f2.txt"),
            _file("f3", "f3.txt", "g2", "demo/docs/drafts/f3.txt"),
        ]
    )


def test_resolve_path_returns_ancestor_names_root_first():
    tree = _tree()
    assert resolve_path(tree, "f1") == ()
    assert resolve_path(tree, "f2") == ("docs",)
    assert resolve_path(tree, "f3") == ("docs", "drafts")
    assert resolve_path(tree, "g2") == ("docs",)


def test_null_id_resolves_to_room_root():
    tree = _tree()
    assert resolve_path(tree, None) == ()
    assert folder_path(tree, None) == ()


def test_folder_path_includes_folder_itself():
    tree = _tree()
    assert folder_path(tree, "g1") == ("docs",)
    assert folder_path(tree, "g2") == ("docs", "drafts")


def test_broken_parent_chain_is_unresolvable():
    tree = _tree()
    tree.add(Entry.folder(id="lost", name="lost", parent_id="ghost", timestamp=TS))
    tree.add(_file("f9", "f9.txt", "lost"))

    assert resolve_path(tree, "f9") is None
    assert folder_path(tree, "lost") is None
    assert resolve_path(tree, "unknown") is None


def test_file_cannot_act_as_container():
    tree = _tree()
    tree.add(_file("inner", "inner.txt", "f1"))
    assert resolve_path(tree, "inner") is None


def test_cycle_raises_instead_of_looping():
    tree = EntryTree(
        [
            Entry.folder(id="a", name="a", parent_id="b", timestamp=TS),
            Entry.folder(id="b", name="b", parent_id="a", timestamp=TS),
            _file("c", "c.txt", "a"),
        ]
    )
    with pytest.raises(CyclicHierarchyError):
        resolve_path(tree, "c")


def test_self_parent_is_a_cycle():
    tree = EntryTree([Entry.folder(id="x", name="x", parent_id="x", timestamp=TS)])
    with pytest.raises(CyclicHierarchyError) as excinfo:
        folder_path(tree, "x")
    assert excinfo.value.status_code == 500


def test_resolver_shares_work_across_entries():
    tree = _tree()
    resolver = PathResolver(tree)
    assert resolver.path_of(tree.require("f3")) == ("docs", "drafts", "f3.txt")
    assert resolver.path_of(tree.require("f2")) == ("docs", "f2.txt")
    assert resolver.folder_path("g2") == ("docs", "drafts")
