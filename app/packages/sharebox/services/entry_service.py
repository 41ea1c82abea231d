"""条目服务：房间内文件/文件夹的创建、上传、重命名、删除、下载与分享。

所有写操作的模式一致：持有房间锁 -> 读取房间 -> 在 ``RoomSnapshot`` 上修改 -> 一次性写回。
级联逻辑本身在 ``entry_operations`` 中实现，这里只负责加载、写回与响应封装。
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.core.constants import HTTP_STATUS_GONE, HTTP_STATUS_OK
from app.packages.sharebox.core.exceptions import AppException, ConflictError, NotFoundError, ShareAccessError
from app.packages.sharebox.core.logger import logger, room_log_context
from app.packages.sharebox.core.responses import create_response
from app.packages.sharebox.core.room_lock import room_lock
from app.packages.sharebox.core.security import get_password_hash, new_share_token, verify_password
from app.packages.sharebox.core.timezone import now, now_iso, parse_iso, to_iso
from app.packages.sharebox.crud.room import room_crud
from app.packages.sharebox.services.entry_operations import delete_entry, rename_entry
from app.packages.sharebox.services.entry_tree import Entry, RoomSnapshot
from app.packages.sharebox.services.path_resolver import PathResolver
from app.packages.sharebox.services.room_service import persist_snapshot, require_room
from app.packages.sharebox.services.storage_backends import StorageBackend, guess_mime
from app.packages.sharebox.utils.path_utils import marker_key, norm_name, object_key

# (文件名, 内容, content-type)
UploadMaterial = Tuple[Optional[str], bytes, Optional[str]]


class EntryService:
    """聚合房间条目相关的业务能力。"""

    # ----------------------------
    # 文件夹与上传
    # ----------------------------
    def create_folder(
        self,
        db: Session,
        *,
        store: StorageBackend,
        room_name: str,
        name: Optional[str],
        parent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        folder_name = norm_name(name, what="文件夹名称")
        with room_log_context(room_name), room_lock(room_name):
            room = require_room(db, room_name)
            snapshot = RoomSnapshot.from_model(room)
            if parent_id is not None:
                snapshot.tree.require_folder(parent_id)
            if snapshot.tree.find_sibling(parent_id, folder_name) is not None:
                raise ConflictError("同一目录下已存在同名条目", {"name": folder_name})

            parent_path = PathResolver(snapshot.tree).folder_path(parent_id)
            folder = snapshot.tree.add(Entry.folder(name=folder_name, parent_id=parent_id, timestamp=now_iso()))
            persist_snapshot(db, room, snapshot)

            # 占位对象仅用于让空目录在存储中可见，写入失败不影响创建结果
            if parent_path is not None:
                try:
                    store.put_object(key=marker_key(room_name, parent_path + (folder_name,)), data=b"")
                except AppException:
                    logger.warning("Failed to write keep marker for folder %s", folder.id, exc_info=True)
            logger.info("Folder %s created under %s", folder_name, parent_id or "root")
        return create_response("创建文件夹成功", folder.to_public_dict(), HTTP_STATUS_OK)

    def upload_files(
        self,
        db: Session,
        *,
        store: StorageBackend,
        room_name: str,
        parent_id: Optional[str],
        files: List[UploadMaterial],
    ) -> Dict[str, Any]:
        """逐个上传文件；单个失败只体现在该文件的结果中。"""
        if not files:
            raise AppException("未选择任何文件")
        results: list[dict] = []
        with room_log_context(room_name), room_lock(room_name):
            room = require_room(db, room_name)
            snapshot = RoomSnapshot.from_model(room)
            if parent_id is not None:
                snapshot.tree.require_folder(parent_id)
            parent_path = PathResolver(snapshot.tree).folder_path(parent_id)
            if parent_path is None:
                raise AppException("目标文件夹路径无法解析，请先同步房间")

            changed = False
            for raw_name, content, content_type in files:
                display = os.path.basename(raw_name or "")
                try:
                    entry = self._store_upload(
                        snapshot,
                        store=store,
                        parent_id=parent_id,
                        parent_path=parent_path,
                        raw_name=display,
                        content=content,
                        content_type=content_type,
                    )
                except AppException as exc:
                    results.append({"name": display, "status": "failure", "message": f"上传失败：{exc.msg}", "entry": None})
                    continue
                changed = True
                results.append({"name": entry.name, "status": "success", "message": "文件上传成功", "entry": entry.to_public_dict()})

            if changed:
                persist_snapshot(db, room, snapshot)
        succeeded = sum(1 for item in results if item["status"] == "success")
        logger.info("Uploaded %s/%s files", succeeded, len(results))
        return create_response("上传完成", results, HTTP_STATUS_OK)

    def _store_upload(
        self,
        snapshot: RoomSnapshot,
        *,
        store: StorageBackend,
        parent_id: Optional[str],
        parent_path: tuple[str, ...],
        raw_name: str,
        content: bytes,
        content_type: Optional[str],
    ) -> Entry:
        name = norm_name(raw_name, what="文件名")
        key = object_key(snapshot.name, parent_path, name)
        sibling = snapshot.tree.find_sibling(parent_id, name)
        if sibling is not None and sibling.is_folder:
            raise ConflictError("同一目录下已存在同名文件夹")
        mime = content_type or guess_mime(name)
        store.put_object(key=key, data=content, content_type=mime)

        stamp = now_iso()
        # 同 key 的文件视为覆盖上传，沿用原条目
        existing = snapshot.tree.find_by_storage_key(key) or sibling
        if existing is not None:
            existing.size = len(content)
            existing.mime_type = mime
            existing.storage_key = key
            existing.updated_at = stamp
            return existing
        return snapshot.tree.add(
            Entry.file(
                name=name,
                parent_id=parent_id,
                timestamp=stamp,
                size=len(content),
                mime_type=mime,
                storage_key=key,
            )
        )

    # ----------------------------
    # 重命名与删除
    # ----------------------------
    def rename(
        self,
        db: Session,
        *,
        store: StorageBackend,
        room_name: str,
        entry_id: str,
        new_name: Optional[str],
    ) -> Dict[str, Any]:
        with room_log_context(room_name), room_lock(room_name):
            room = require_room(db, room_name)
            snapshot = RoomSnapshot.from_model(room)
            report = rename_entry(snapshot, entry_id, new_name, store=store)
            persist_snapshot(db, room, snapshot)
        return create_response("重命名成功", report.to_dict(), HTTP_STATUS_OK)

    def delete(self, db: Session, *, store: StorageBackend, room_name: str, entry_id: str) -> Dict[str, Any]:
        with room_log_context(room_name), room_lock(room_name):
            room = require_room(db, room_name)
            snapshot = RoomSnapshot.from_model(room)
            report = delete_entry(snapshot, entry_id, store=store)
            persist_snapshot(db, room, snapshot)
        return create_response("删除成功", report.to_dict(), HTTP_STATUS_OK)

    # ----------------------------
    # 下载与分享
    # ----------------------------
    def get_file_url(self, db: Session, *, store: StorageBackend, room_name: str, entry_id: str) -> Dict[str, Any]:
        room = require_room(db, room_name)
        entry = RoomSnapshot.from_model(room).tree.get(entry_id)
        if entry is None or not entry.is_file:
            raise NotFoundError("文件不存在", {"entryId": entry_id})
        return create_response("获取下载地址成功", self._signed_payload(store, entry), HTTP_STATUS_OK)

    def set_share_options(
        self,
        db: Session,
        *,
        room_name: str,
        entry_id: str,
        enabled: bool,
        expires_at: Optional[datetime] = None,
        password: Optional[str] = None,
    ) -> Dict[str, Any]:
        """开启分享时沿用已有 token；关闭分享时清空全部分享字段。"""
        with room_log_context(room_name), room_lock(room_name):
            room = require_room(db, room_name)
            snapshot = RoomSnapshot.from_model(room)
            entry = snapshot.tree.require(entry_id)
            if not entry.is_file:
                raise AppException("只能分享文件")

            stamp = now_iso()
            if enabled:
                entry.share_token = entry.share_token or new_share_token()
                entry.share_issued_at = entry.share_issued_at or stamp
                entry.share_expiry = to_iso(expires_at)
                entry.share_password = get_password_hash(password) if password else None
            else:
                entry.share_token = None
                entry.share_issued_at = None
                entry.share_expiry = None
                entry.share_password = None
            entry.updated_at = stamp
            persist_snapshot(db, room, snapshot)
        logger.info("Share %s for entry %s", "enabled" if enabled else "disabled", entry_id)
        return create_response("分享设置已更新", entry.to_public_dict(), HTTP_STATUS_OK)

    def resolve_share(
        self,
        db: Session,
        *,
        store: StorageBackend,
        token: str,
        password: Optional[str] = None,
    ) -> Dict[str, Any]:
        """按分享 token 查找文件，校验有效期与密码后返回临时下载地址。"""
        for room in room_crud.list_all(db):
            entry = RoomSnapshot.from_model(room).tree.find_by_share_token(token)
            if entry is None:
                continue
            expiry = parse_iso(entry.share_expiry)
            if expiry is not None and expiry <= now():
                raise ShareAccessError("分享已过期", HTTP_STATUS_GONE)
            if entry.share_password and not (password and verify_password(password, entry.share_password)):
                raise ShareAccessError("分享密码错误")
            data = self._signed_payload(store, entry)
            data.update({"room": room.name, "size": entry.size, "mimeType": entry.mime_type})
            return create_response("获取分享成功", data, HTTP_STATUS_OK)
        raise NotFoundError("分享不存在或已关闭")

    def _signed_payload(self, store: StorageBackend, entry: Entry) -> Dict[str, Any]:
        if not entry.storage_key:
            raise NotFoundError("文件数据不可用", {"entryId": entry.id})
        ttl = get_settings().signed_url_ttl_seconds
        url = store.signed_url(key=entry.storage_key, ttl_seconds=ttl, filename=entry.name)
        return {"url": url, "name": entry.name, "expiresIn": ttl}


entry_service = EntryService()
