"""房间同步服务：以对象存储列举结果为准，修复房间条目元数据的漂移。

独立函数形式：
- ``list_room_objects``：分页列举房间前缀下的全部对象；
- ``reconcile_entries``：纯内存比对与修复，不做任何 I/O，便于单独测试；
- ``reconcile_room``：加锁、列举、修复并在有变化时写回。

修复分四步：清理（对象已不存在的文件、无内容的文件夹，以及随之悬空的子条目）、
挂接（对象仍在但父目录已被清理的文件）、补录（存储中有对象但没有条目）、
写回（仅在前三步有变化时）。同一份列举结果重复执行不会产生新的变化。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.core.constants import HTTP_STATUS_OK
from app.packages.sharebox.core.logger import logger, room_log_context
from app.packages.sharebox.core.responses import create_response
from app.packages.sharebox.core.room_lock import room_lock
from app.packages.sharebox.core.timezone import now_iso, to_iso
from app.packages.sharebox.services.cascade import descendants_of
from app.packages.sharebox.services.entry_tree import Entry, RoomSnapshot
from app.packages.sharebox.services.path_resolver import Path, PathResolver
from app.packages.sharebox.services.room_service import persist_snapshot, require_room
from app.packages.sharebox.services.storage_backends import ObjectInfo, StorageBackend, guess_mime
from app.packages.sharebox.utils.path_utils import is_marker_key, relative_key, room_prefix, split_key

# 完整 key -> 对象信息
Listing = Dict[str, ObjectInfo]


@dataclass
class ReconcileReport:
    removed: int = 0
    added: int = 0
    reparented: int = 0
    cursor_reset: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.added or self.reparented or self.cursor_reset)

    def to_dict(self) -> dict:
        return {"removed": self.removed, "added": self.added, "reparented": self.reparented}


def list_room_objects(store: StorageBackend, room_name: str, *, page_size: Optional[int] = None) -> Listing:
    """分页列举直至耗尽；任一页失败即整体失败（``StorageUnavailableError``）。"""
    size = page_size or get_settings().storage_list_page_size
    prefix = room_prefix(room_name)
    listing: Listing = {}
    cursor: Optional[str] = None
    pages = 0
    while True:
        page = store.list_objects(prefix=prefix, page_size=size, cursor=cursor)
        pages += 1
        for obj in page.objects:
            listing[obj.key] = obj
        if not page.has_more or not page.next_cursor:
            break
        cursor = page.next_cursor
    logger.debug("Listed %s objects under %s in %s pages", len(listing), prefix, pages)
    return listing


def _content_dirs(room_name: str, listing: Listing, *, keep_marker_folders: bool) -> set[Path]:
    """所有“下面有内容”的目录路径（含各级祖先）。"""
    dirs: set[Path] = set()
    for key in listing:
        rel = relative_key(room_name, key)
        if not rel:
            continue
        if is_marker_key(rel) and not keep_marker_folders:
            continue
        segments, _ = split_key(rel)
        for depth in range(1, len(segments) + 1):
            dirs.add(segments[:depth])
    return dirs


def _prune(snapshot: RoomSnapshot, listing: Listing, *, keep_marker_folders: bool) -> tuple[set[str], set[str]]:
    """返回 (待删除 id, 需重新挂接的文件 id)。"""
    tree = snapshot.tree
    resolver = PathResolver(tree)
    content_dirs = _content_dirs(snapshot.name, listing, keep_marker_folders=keep_marker_folders)

    doomed: set[str] = set()
    for entry in tree:
        if entry.is_file:
            if entry.storage_key and entry.storage_key not in listing:
                doomed.add(entry.id)
        else:
            path = resolver.folder_path(entry.id)
            # 路径无法解析的文件夹交给下面的悬空清理
            if path is not None and path not in content_dirs:
                doomed.add(entry.id)

    # 悬空清理：父目录已被删除的条目随之删除，直到不再变化；
    # 对象仍在的文件保留下来等待重新挂接
    def _object_alive(entry_id: str) -> bool:
        item = tree.get(entry_id)
        return item is not None and item.is_file and item.storage_key in listing

    to_repair: set[str] = set()
    while True:
        live_folders = {e.id for e in tree if e.is_folder and e.id not in doomed}
        newly: set[str] = set()
        for entry in tree:
            if entry.id in doomed or entry.id in to_repair:
                continue
            if entry.parent_id is None or entry.parent_id in live_folders:
                continue
            for item_id in descendants_of(tree, entry.id) - doomed:
                if _object_alive(item_id):
                    to_repair.add(item_id)
                else:
                    newly.add(item_id)
        if not newly:
            break
        doomed |= newly
    return doomed, to_repair


def _folder_index(snapshot: RoomSnapshot) -> dict[Path, str]:
    resolver = PathResolver(snapshot.tree)
    index: dict[Path, str] = {}
    for folder in snapshot.tree.folders():
        path = resolver.folder_path(folder.id)
        if path is not None:
            index.setdefault(path, folder.id)
    return index


def _repair(snapshot: RoomSnapshot, file_ids: set[str], index: dict[Path, str]) -> int:
    repaired = 0
    for file_id in sorted(file_ids):
        entry = snapshot.tree.get(file_id)
        if entry is None:
            continue
        rel = relative_key(snapshot.name, entry.storage_key) or ""
        segments, _ = split_key(rel)
        parent_id: Optional[str] = None
        for depth in range(len(segments), 0, -1):
            parent_id = index.get(segments[:depth])
            if parent_id is not None:
                break
        logger.info("Reattaching %s (%s) under %s", entry.id, entry.storage_key, parent_id or "root")
        entry.parent_id = parent_id
        repaired += 1
    return repaired


def _ensure_folders(snapshot: RoomSnapshot, segments: Path, index: dict[Path, str], timestamp: str) -> tuple[Optional[str], int]:
    parent_id: Optional[str] = None
    created = 0
    for depth in range(1, len(segments) + 1):
        path = segments[:depth]
        folder_id = index.get(path)
        if folder_id is None:
            folder = snapshot.tree.add(Entry.folder(name=path[-1], parent_id=parent_id, timestamp=timestamp))
            index[path] = folder.id
            folder_id = folder.id
            created += 1
        parent_id = folder_id
    return parent_id, created


def _synthesize(
    snapshot: RoomSnapshot,
    listing: Listing,
    index: dict[Path, str],
    *,
    keep_marker_folders: bool,
    timestamp: str,
) -> int:
    claimed = {e.storage_key for e in snapshot.tree.files() if e.storage_key}
    added = 0
    for key in sorted(listing):
        if key in claimed:
            continue
        rel = relative_key(snapshot.name, key)
        if not rel:
            continue
        segments, name = split_key(rel)
        if is_marker_key(rel):
            if keep_marker_folders:
                _, created = _ensure_folders(snapshot, segments, index, timestamp)
                added += created
            continue
        parent_id, created = _ensure_folders(snapshot, segments, index, timestamp)
        added += created
        info = listing[key]
        snapshot.tree.add(
            Entry.file(
                name=name,
                parent_id=parent_id,
                timestamp=timestamp,
                updated_at=to_iso(info.last_modified),
                size=info.size,
                mime_type=guess_mime(name),
                storage_key=key,
            )
        )
        claimed.add(key)
        added += 1
    return added


def reconcile_entries(
    snapshot: RoomSnapshot,
    listing: Listing,
    *,
    keep_marker_folders: bool = False,
    timestamp: Optional[str] = None,
) -> ReconcileReport:
    """按列举结果就地修复 ``snapshot``，返回各阶段的变化数量。

    目录成环属于元数据损坏，``CyclicHierarchyError`` 直接向上抛出，不做任何修改。
    """
    stamp = timestamp or now_iso()
    report = ReconcileReport()

    doomed, to_repair = _prune(snapshot, listing, keep_marker_folders=keep_marker_folders)
    report.removed = len(snapshot.tree.remove_ids(doomed))

    index = _folder_index(snapshot)
    report.reparented = _repair(snapshot, to_repair, index)
    report.added = _synthesize(snapshot, listing, index, keep_marker_folders=keep_marker_folders, timestamp=stamp)
    report.cursor_reset = snapshot.drop_stale_cursor()
    return report


def reconcile_room(db: Session, *, store: StorageBackend, room_name: str):
    """同步房间条目并在有变化时写回，返回统一响应结构。"""
    settings = get_settings()
    with room_log_context(room_name), room_lock(room_name):
        room = require_room(db, room_name)
        snapshot = RoomSnapshot.from_model(room)
        listing = list_room_objects(store, room_name, page_size=settings.storage_list_page_size)
        report = reconcile_entries(snapshot, listing, keep_marker_folders=settings.sync_keep_marker_folders)
        if report.changed:
            persist_snapshot(db, room, snapshot)
        logger.info(
            "Sync finished: removed=%s added=%s reparented=%s (objects=%s)",
            report.removed,
            report.added,
            report.reparented,
            len(listing),
        )
    return create_response("同步完成", report.to_dict(), HTTP_STATUS_OK)
