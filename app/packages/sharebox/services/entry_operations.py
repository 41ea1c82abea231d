"""条目级联操作：删除子树与重命名（含文件夹对象前缀迁移）。

两个操作都作用于已加载的 ``RoomSnapshot``：
1. 结构校验（条目存在、名称合法、无同名冲突）在任何存储调用之前完成；
2. 规划存储动作并并发执行，单个动作失败只记录，不中断整体；
3. 全部动作结束后才修改内存中的条目，由调用方整体写回。

存储与元数据之间因此只是最终一致，残留差异由同步（``sync_service``）修复。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.core.exceptions import AppException, ConflictError, StorageUnavailableError
from app.packages.sharebox.core.logger import logger
from app.packages.sharebox.core.timezone import now_iso
from app.packages.sharebox.services.cascade import descendants_of
from app.packages.sharebox.services.entry_tree import Entry, RoomSnapshot
from app.packages.sharebox.services.path_resolver import PathResolver
from app.packages.sharebox.services.storage_actions import (
    ActionKind,
    ActionResult,
    StorageAction,
    execute_actions,
    failed_results,
)
from app.packages.sharebox.services.storage_backends import StorageBackend
from app.packages.sharebox.utils.path_utils import marker_key, norm_name, path_prefix, replace_basename


@dataclass
class DeleteReport:
    removed_ids: List[str]
    results: List[ActionResult] = field(default_factory=list)
    cursor_reset: bool = False

    @property
    def failures(self) -> List[ActionResult]:
        return failed_results(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "removedIds": self.removed_ids,
            "removed": len(self.removed_ids),
            "cursorReset": self.cursor_reset,
            "storage": [result.to_dict() for result in self.results],
            "failed": len(self.failures),
        }


@dataclass
class RenameReport:
    entry: Entry
    old_name: str
    results: List[ActionResult] = field(default_factory=list)
    rewritten_ids: List[str] = field(default_factory=list)

    @property
    def failures(self) -> List[ActionResult]:
        return failed_results(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": self.entry.to_public_dict(),
            "oldName": self.old_name,
            "rewrittenIds": self.rewritten_ids,
            "storage": [result.to_dict() for result in self.results],
            "failed": len(self.failures),
        }


def _fanout_options(max_workers: Optional[int], timeout: Optional[float]) -> tuple[int, float]:
    settings = get_settings()
    return (
        max_workers if max_workers is not None else settings.storage_max_workers,
        timeout if timeout is not None else settings.storage_operation_timeout_seconds,
    )


# ------------------------------------------
# 删除
# ------------------------------------------


def plan_delete(snapshot: RoomSnapshot, entry_id: str) -> tuple[set[str], List[StorageAction]]:
    """计算待删除的 id 集合与对应的存储动作（不执行）。"""
    tree = snapshot.tree
    entry = tree.require(entry_id)
    doomed = descendants_of(tree, entry_id)
    resolver = PathResolver(tree)

    prefixes: list[tuple[str, str]] = []
    keys: list[tuple[str, str]] = []
    for item in tree:
        if item.id not in doomed:
            continue
        if item.is_folder:
            folder_path = resolver.folder_path(item.id)
            if folder_path is None:
                logger.warning("Folder %s has no resolvable path, skipping prefix delete", item.id)
                continue
            prefixes.append((path_prefix(snapshot.name, folder_path), item.id))
        elif item.storage_key:
            keys.append((item.storage_key, item.id))

    # 外层前缀删除已覆盖的对象与子前缀不再重复下发
    prefixes.sort(key=lambda pair: len(pair[0]))
    kept_prefixes: list[tuple[str, str]] = []
    for prefix, owner in prefixes:
        if not any(prefix.startswith(outer) for outer, _ in kept_prefixes):
            kept_prefixes.append((prefix, owner))

    actions = [StorageAction.delete_prefix(prefix, entry_id=owner) for prefix, owner in kept_prefixes]
    for key, owner in keys:
        if not any(key.startswith(prefix) for prefix, _ in kept_prefixes):
            actions.append(StorageAction.delete(key, entry_id=owner))

    # 删除文件后父目录下已无其他文件：写入占位对象，保证空目录在存储中仍可见
    if entry.is_file and entry.parent_id is not None:
        siblings = [e for e in tree.children(entry.parent_id) if e.is_file and e.id != entry.id]
        if not siblings:
            parent_path = resolver.folder_path(entry.parent_id)
            if parent_path is not None:
                actions.append(StorageAction.put_marker(marker_key(snapshot.name, parent_path), entry_id=entry.parent_id))
    return doomed, actions


def delete_entry(
    snapshot: RoomSnapshot,
    entry_id: str,
    *,
    store: StorageBackend,
    max_workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> DeleteReport:
    """删除条目及其全部后代；存储删除尽力而为，元数据删除总会执行。"""
    doomed, actions = plan_delete(snapshot, entry_id)
    workers, deadline = _fanout_options(max_workers, timeout)
    # 占位对象在删除全部结束后再写，避免被同一前缀上的删除带走
    removals = [a for a in actions if a.kind is not ActionKind.PUT_MARKER]
    markers = [a for a in actions if a.kind is ActionKind.PUT_MARKER]
    results = execute_actions(store, removals, max_workers=workers, timeout=deadline)
    results += execute_actions(store, markers, max_workers=workers, timeout=deadline)

    removed = snapshot.tree.remove_ids(doomed)
    cursor_reset = False
    if snapshot.current_folder_id is not None and snapshot.current_folder_id in doomed:
        snapshot.current_folder_id = None
        cursor_reset = True

    report = DeleteReport(removed_ids=[e.id for e in removed], results=results, cursor_reset=cursor_reset)
    if report.failures:
        logger.warning(
            "Deleted %s entries with %s storage failures; sync will reconcile",
            len(removed),
            len(report.failures),
        )
    else:
        logger.info("Deleted %s entries (%s storage actions)", len(removed), len(results))
    return report


# ------------------------------------------
# 重命名
# ------------------------------------------


def rename_entry(
    snapshot: RoomSnapshot,
    entry_id: str,
    new_name: Optional[str],
    *,
    store: StorageBackend,
    max_workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> RenameReport:
    """重命名条目。

    - 文件：复制到同目录下的新 key，成功后删除旧 key；复制失败整体失败且不改元数据；
    - 文件夹：把旧路径前缀下的每个对象迁移到新前缀，并同步改写后代文件的 ``storage_key``，
      迁移失败的对象仍在旧位置，对应条目保留旧 key；
    - 路径无法解析的文件夹（孤立条目）只更新元数据。
    """
    tree = snapshot.tree
    entry = tree.require(entry_id)
    name = norm_name(new_name)
    if tree.find_sibling(entry.parent_id, name, exclude_id=entry.id) is not None:
        raise ConflictError("同一目录下已存在同名条目", {"name": name})

    report = RenameReport(entry=entry, old_name=entry.name)
    if name == entry.name:
        return report

    if entry.is_file:
        _rename_file_object(snapshot, entry, name, store)
    else:
        workers, deadline = _fanout_options(max_workers, timeout)
        _rename_folder_objects(snapshot, entry, name, store, report, max_workers=workers, timeout=deadline)

    entry.name = name
    entry.updated_at = now_iso()
    logger.info("Renamed %s %s: %s -> %s", entry.kind.value, entry.id, report.old_name, name)
    return report


def _rename_file_object(snapshot: RoomSnapshot, entry: Entry, name: str, store: StorageBackend) -> None:
    if not entry.storage_key:
        return
    old_key = entry.storage_key
    new_key = replace_basename(old_key, name)
    holder = snapshot.tree.find_by_storage_key(new_key)
    if holder is not None and holder.id != entry.id:
        raise ConflictError("目标对象已被其他文件占用", {"storageKey": new_key})

    try:
        store.copy_object(source_key=old_key, dest_key=new_key)
    except AppException as exc:
        logger.exception("Copy %s -> %s failed, rename aborted", old_key, new_key)
        raise StorageUnavailableError("重命名失败：复制对象失败", {"storageKey": old_key}) from exc

    try:
        store.delete_object(key=old_key)
    except AppException:
        # 新对象已就绪，旧对象残留交给同步清理
        logger.exception("Old object %s left behind after rename", old_key)
    entry.storage_key = new_key


def _rename_folder_objects(
    snapshot: RoomSnapshot,
    folder: Entry,
    name: str,
    store: StorageBackend,
    report: RenameReport,
    *,
    max_workers: int,
    timeout: float,
) -> None:
    tree = snapshot.tree
    old_path = PathResolver(tree).folder_path(folder.id)
    if not old_path:
        logger.warning("Folder %s has no resolvable path, renaming metadata only", folder.id)
        return
    new_path = old_path[:-1] + (name,)
    old_prefix = path_prefix(snapshot.name, old_path)
    new_prefix = path_prefix(snapshot.name, new_path)

    # 列举失败属于整体失败，此时尚未做任何修改
    keys = [obj.key for obj in store.iter_objects(prefix=old_prefix, page_size=get_settings().storage_list_page_size)]
    key_owner = {e.storage_key: e.id for e in tree.files() if e.storage_key}
    actions = [
        StorageAction.move(key, new_prefix + key[len(old_prefix):], entry_id=key_owner.get(key))
        for key in keys
    ]
    report.results = execute_actions(store, actions, max_workers=max_workers, timeout=timeout)
    stuck = {result.action.key for result in report.failures}

    for item_id in descendants_of(tree, folder.id):
        item = tree.get(item_id)
        if item is None or not item.is_file or not item.storage_key:
            continue
        if not item.storage_key.startswith(old_prefix) or item.storage_key in stuck:
            continue
        item.storage_key = new_prefix + item.storage_key[len(old_prefix):]
        report.rewritten_ids.append(item.id)

    if stuck:
        logger.warning("Folder rename left %s objects under %s; sync will reconcile", len(stuck), old_prefix)
