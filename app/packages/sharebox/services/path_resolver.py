"""路径解析：沿 parent 引用向上回溯，得到条目的逻辑路径。

- ``resolve_path``：条目所在目录的名称序列（根在前，不含条目自身），
  即该条目自身对象所在的前缀；
- ``folder_path``：文件夹自身的完整路径（含自身名称），即其所有后代对象的前缀；
- 引用链指向不存在的父条目时无法解析，返回 ``None``（孤立条目）；
- 回溯步数以条目总数为上限，超过即判定成环并抛出 ``CyclicHierarchyError``。

同一次同步需要解析大量条目，``PathResolver`` 在实例内缓存已解析的文件夹路径。
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Union

from app.packages.sharebox.core.exceptions import CyclicHierarchyError
from app.packages.sharebox.services.entry_tree import Entry, EntryTree

Path = tuple[str, ...]

EntriesLike = Union[EntryTree, Mapping[str, Entry], Iterable[Entry]]


def _as_index(entries: EntriesLike) -> Mapping[str, Entry]:
    if isinstance(entries, EntryTree):
        return entries.index
    if isinstance(entries, Mapping):
        return entries
    return {entry.id: entry for entry in entries}


class PathResolver:
    """带缓存的路径解析器；树结构变化后应新建实例。"""

    def __init__(self, entries: EntriesLike) -> None:
        self._index = _as_index(entries)
        self._limit = len(self._index)
        # folder id -> 完整路径（None 表示无法解析）
        self._cache: dict[str, Optional[Path]] = {}

    def folder_path(self, folder_id: Optional[str]) -> Optional[Path]:
        if folder_id is None:
            return ()
        if folder_id in self._cache:
            return self._cache[folder_id]

        chain: list[Entry] = []
        cursor: Optional[str] = folder_id
        resolved: Optional[Path] = None
        broken = False
        while cursor is not None:
            if cursor in self._cache:
                resolved = self._cache[cursor]
                broken = resolved is None
                break
            node = self._index.get(cursor)
            if node is None or not node.is_folder:
                broken = True
                break
            chain.append(node)
            if len(chain) > self._limit:
                raise CyclicHierarchyError(folder_id)
            cursor = node.parent_id
        else:
            resolved = ()

        # 自顶向下回填缓存
        for node in reversed(chain):
            if broken:
                self._cache[node.id] = None
            else:
                resolved = resolved + (node.name,)  # type: ignore[operator]
                self._cache[node.id] = resolved
        if broken:
            return None
        return self._cache.get(folder_id, resolved)

    def resolve_path(self, entry_id: Optional[str]) -> Optional[Path]:
        if entry_id is None:
            return ()
        entry = self._index.get(entry_id)
        if entry is None:
            return None
        return self.folder_path(entry.parent_id)

    def path_of(self, entry: Entry) -> Optional[Path]:
        """条目自身的完整逻辑路径（文件含文件名）。"""
        parent_path = self.folder_path(entry.parent_id)
        if parent_path is None:
            return None
        return parent_path + (entry.name,)


def resolve_path(entries: EntriesLike, entry_id: Optional[str]) -> Optional[Path]:
    return PathResolver(entries).resolve_path(entry_id)


def folder_path(entries: EntriesLike, folder_id: Optional[str]) -> Optional[Path]:
    return PathResolver(entries).folder_path(folder_id)
