"""级联规划：计算某条目的全部后代（删除与同步孤儿清理共用）。"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Iterable

from app.packages.sharebox.services.entry_tree import Entry, EntryTree


def descendants_of(entries: EntryTree | Iterable[Entry], root_id: str) -> set[str]:
    """返回以 ``root_id`` 为根的子树 id 集合（始终包含 ``root_id`` 自身）。

    与“反复扫描直到不再新增”的定点算法结果一致，这里先建邻接表再广度遍历；
    visited 集合保证损坏的环形引用不会导致死循环。
    """
    children: dict[str, list[str]] = defaultdict(list)
    for entry in entries:
        if entry.parent_id is not None:
            children[entry.parent_id].append(entry.id)

    found = {root_id}
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        for child_id in children.get(current, ()):
            if child_id not in found:
                found.add(child_id)
                queue.append(child_id)
    return found
