"""房间条目森林：文件/文件夹节点的内存表示与不变式检查。

条目以 JSON 数组保存在房间记录中，加载后在内存中修改，操作结束时整体写回。
森林需满足：
1. 不存在环；非空 ``parent_id`` 必须指向同房间内存在的文件夹；
2. 非空 ``storage_key`` 至多属于一个文件条目；
3. 同一父目录下的名称唯一（允许存量数据违反，但同步不会引入新的重复）；
4. 房间游标 ``current_folder_id`` 若非空，必须指向存在的文件夹。
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.core.exceptions import NotFoundError
from app.packages.sharebox.utils.path_utils import strip_root_prefix


class EntryKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


def new_entry_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Entry:
    id: str
    name: str
    kind: EntryKind
    parent_id: Optional[str]
    created_at: str
    updated_at: str
    # 仅文件条目
    size: int = 0
    mime_type: Optional[str] = None
    storage_key: Optional[str] = None
    share_expiry: Optional[str] = None
    share_password: Optional[str] = None
    share_token: Optional[str] = None
    share_issued_at: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    @classmethod
    def folder(cls, *, name: str, parent_id: Optional[str], timestamp: str, id: Optional[str] = None) -> "Entry":
        return cls(
            id=id or new_entry_id(),
            name=name,
            kind=EntryKind.FOLDER,
            parent_id=parent_id,
            created_at=timestamp,
            updated_at=timestamp,
        )

    @classmethod
    def file(
        cls,
        *,
        name: str,
        parent_id: Optional[str],
        timestamp: str,
        size: int,
        mime_type: Optional[str],
        storage_key: Optional[str],
        updated_at: Optional[str] = None,
        id: Optional[str] = None,
    ) -> "Entry":
        return cls(
            id=id or new_entry_id(),
            name=name,
            kind=EntryKind.FILE,
            parent_id=parent_id,
            created_at=timestamp,
            updated_at=updated_at or timestamp,
            size=size,
            mime_type=mime_type,
            storage_key=storage_key,
        )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Entry":
        kind = EntryKind(raw.get("type") or raw.get("kind") or EntryKind.FILE.value)
        entry = cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or ""),
            kind=kind,
            parent_id=raw.get("parentId") or None,
            created_at=raw.get("createdAt") or "",
            updated_at=raw.get("updatedAt") or raw.get("createdAt") or "",
        )
        if kind is EntryKind.FILE:
            entry.size = int(raw.get("size") or 0)
            entry.mime_type = raw.get("mimeType")
            # 早期数据使用 ossObjectName 保存含根前缀的完整对象名
            entry.storage_key = raw.get("storageKey") or strip_root_prefix(
                raw.get("ossObjectName"), get_settings().storage_path_prefix
            )
            entry.share_expiry = raw.get("expiresAt")
            entry.share_password = raw.get("sharedPassword")
            entry.share_token = raw.get("shareToken")
            entry.share_issued_at = raw.get("shareCreatedAt")
        return entry

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "parentId": self.parent_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.is_file:
            data.update(
                {
                    "size": self.size,
                    "mimeType": self.mime_type,
                    "storageKey": self.storage_key,
                    "expiresAt": self.share_expiry,
                    "sharedPassword": self.share_password,
                    "shareToken": self.share_token,
                    "shareCreatedAt": self.share_issued_at,
                }
            )
        return data

    def to_public_dict(self) -> dict[str, Any]:
        """对外输出：隐藏分享密码哈希，仅暴露是否设置了密码。"""
        data = self.to_dict()
        if self.is_file:
            data["sharedPassword"] = None
            data["hasSharedPassword"] = bool(self.share_password)
        return data


class EntryTree:
    """有序条目集合 + id 索引。插入顺序没有语义，仅为稳定输出。"""

    def __init__(self, entries: Iterable[Entry] = ()) -> None:
        self._entries: list[Entry] = []
        self._index: dict[str, Entry] = {}
        for entry in entries:
            self.add(entry)

    @classmethod
    def from_dicts(cls, raw_entries: Optional[Iterable[dict[str, Any]]]) -> "EntryTree":
        return cls(Entry.from_dict(raw) for raw in (raw_entries or []) if isinstance(raw, dict) and raw.get("id"))

    def to_dicts(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._index

    @property
    def index(self) -> dict[str, Entry]:
        return self._index

    def get(self, entry_id: Optional[str]) -> Optional[Entry]:
        if entry_id is None:
            return None
        return self._index.get(entry_id)

    def require(self, entry_id: str) -> Entry:
        entry = self._index.get(entry_id)
        if entry is None:
            raise NotFoundError("条目不存在", {"entryId": entry_id})
        return entry

    def require_folder(self, folder_id: str) -> Entry:
        entry = self._index.get(folder_id)
        if entry is None or not entry.is_folder:
            raise NotFoundError("文件夹不存在", {"folderId": folder_id})
        return entry

    def folders(self) -> list[Entry]:
        return [entry for entry in self._entries if entry.is_folder]

    def files(self) -> list[Entry]:
        return [entry for entry in self._entries if entry.is_file]

    def children(self, parent_id: Optional[str]) -> list[Entry]:
        return [entry for entry in self._entries if entry.parent_id == parent_id]

    def find_sibling(self, parent_id: Optional[str], name: str, *, exclude_id: Optional[str] = None) -> Optional[Entry]:
        for entry in self._entries:
            if entry.parent_id == parent_id and entry.name == name and entry.id != exclude_id:
                return entry
        return None

    def find_by_storage_key(self, storage_key: str) -> Optional[Entry]:
        for entry in self._entries:
            if entry.is_file and entry.storage_key == storage_key:
                return entry
        return None

    def find_by_share_token(self, token: str) -> Optional[Entry]:
        for entry in self._entries:
            if entry.is_file and entry.share_token == token:
                return entry
        return None

    def add(self, entry: Entry) -> Entry:
        if entry.id in self._index:
            raise ValueError(f"duplicate entry id {entry.id}")
        self._entries.append(entry)
        self._index[entry.id] = entry
        return entry

    def remove_ids(self, ids: Iterable[str]) -> list[Entry]:
        doomed = set(ids)
        removed = [entry for entry in self._entries if entry.id in doomed]
        if removed:
            self._entries = [entry for entry in self._entries if entry.id not in doomed]
            for entry in removed:
                self._index.pop(entry.id, None)
        return removed

    def find_violations(self, current_folder_id: Optional[str] = None) -> list[str]:
        """返回违反森林不变式的描述列表；空列表表示一致。"""
        problems: list[str] = []
        for entry in self._entries:
            if entry.parent_id is None:
                continue
            parent = self._index.get(entry.parent_id)
            if parent is None:
                problems.append(f"entry {entry.id} references missing parent {entry.parent_id}")
            elif not parent.is_folder:
                problems.append(f"entry {entry.id} has non-folder parent {entry.parent_id}")

        limit = len(self._entries)
        for entry in self._entries:
            seen: set[str] = set()
            cursor = entry.parent_id
            steps = 0
            while cursor is not None and cursor in self._index and steps <= limit:
                if cursor == entry.id or cursor in seen:
                    problems.append(f"entry {entry.id} is part of a cycle")
                    break
                seen.add(cursor)
                cursor = self._index[cursor].parent_id
                steps += 1

        owners: dict[str, str] = {}
        for entry in self.files():
            if not entry.storage_key:
                continue
            if entry.storage_key in owners:
                problems.append(f"storage key {entry.storage_key} shared by {owners[entry.storage_key]} and {entry.id}")
            else:
                owners[entry.storage_key] = entry.id

        if current_folder_id is not None:
            cursor_entry = self._index.get(current_folder_id)
            if cursor_entry is None or not cursor_entry.is_folder:
                problems.append(f"current folder {current_folder_id} is not a live folder")
        return problems


@dataclass
class RoomSnapshot:
    """一次操作所需的房间状态：加载一次、内存修改、整体写回。"""

    name: str
    current_folder_id: Optional[str]
    tree: EntryTree = field(default_factory=EntryTree)

    @classmethod
    def from_model(cls, room: Any) -> "RoomSnapshot":
        return cls(
            name=room.name,
            current_folder_id=room.current_folder_id,
            tree=EntryTree.from_dicts(room.entries),
        )

    def drop_stale_cursor(self) -> bool:
        """游标指向的文件夹已不存在时重置为空，返回是否发生了变化。"""
        if self.current_folder_id is None:
            return False
        target = self.tree.get(self.current_folder_id)
        if target is not None and target.is_folder:
            return False
        self.current_folder_id = None
        return True
