"""房间服务：房间的创建、查询、删除、密码校验与游标维护。

同时提供其他服务共用的两个辅助函数：``require_room`` 读取房间（不存在抛 404），
``persist_snapshot`` 将内存中修改过的条目森林与游标一次性写回。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.core.constants import HTTP_STATUS_OK
from app.packages.sharebox.core.exceptions import AppException, ConflictError, NotFoundError, ShareAccessError
from app.packages.sharebox.core.logger import logger, room_log_context
from app.packages.sharebox.core.responses import create_response
from app.packages.sharebox.core.room_lock import forget_room, room_lock
from app.packages.sharebox.core.security import get_password_hash, verify_password
from app.packages.sharebox.core.timezone import to_iso
from app.packages.sharebox.crud.room import room_crud
from app.packages.sharebox.models.room import Room
from app.packages.sharebox.services.entry_tree import RoomSnapshot
from app.packages.sharebox.services.storage_backends import StorageBackend
from app.packages.sharebox.utils.path_utils import norm_name, room_prefix


def require_room(db: Session, name: str) -> Room:
    room = room_crud.get_by_name(db, name)
    if room is None:
        raise NotFoundError("房间不存在", {"room": name})
    # 加锁后重新读取，避免拿到会话缓存中的旧条目
    db.refresh(room)
    return room


def persist_snapshot(db: Session, room: Room, snapshot: RoomSnapshot) -> Room:
    return room_crud.update_room(
        db,
        room,
        entries=snapshot.tree.to_dicts(),
        current_folder_id=snapshot.current_folder_id,
    )


class RoomService:
    """聚合房间管理相关的业务能力。"""

    def list_rooms(self, db: Session) -> Dict[str, Any]:
        items = [self._serialize_summary(room) for room in room_crud.list_all(db)]
        return create_response("获取房间列表成功", items, HTTP_STATUS_OK)

    def create_room(self, db: Session, *, name: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        room_name = norm_name(name, what="房间名")
        if not password:
            raise AppException("房间密码不能为空")
        if room_crud.get_by_name(db, room_name) is not None:
            raise ConflictError("房间已存在", {"room": room_name})

        created = room_crud.create(
            db,
            {
                "name": room_name,
                "password": get_password_hash(password),
                "current_folder_id": None,
                "entries": [],
            },
        )
        logger.info("Room %s created", room_name)
        return create_response("创建房间成功", self._serialize_detail(created), HTTP_STATUS_OK)

    def get_room(self, db: Session, *, name: str) -> Dict[str, Any]:
        room = require_room(db, name)
        return create_response("获取房间成功", self._serialize_detail(room), HTTP_STATUS_OK)

    def verify_room_password(self, db: Session, *, name: str, password: Optional[str]) -> Dict[str, Any]:
        room = require_room(db, name)
        if not password or not verify_password(password, room.password):
            raise ShareAccessError("房间密码错误")
        return create_response("验证成功", {"name": room.name, "verified": True}, HTTP_STATUS_OK)

    def update_cursor(self, db: Session, *, name: str, folder_id: Optional[str]) -> Dict[str, Any]:
        with room_log_context(name), room_lock(name):
            room = require_room(db, name)
            if folder_id is not None:
                RoomSnapshot.from_model(room).tree.require_folder(folder_id)
            saved = room_crud.update_room(db, room, current_folder_id=folder_id)
        return create_response("更新当前目录成功", {"currentFolderId": saved.current_folder_id}, HTTP_STATUS_OK)

    def delete_room(self, db: Session, *, name: str, store: StorageBackend) -> Dict[str, Any]:
        """删除房间记录；存储前缀清理尽力而为，失败只记录日志。"""
        with room_log_context(name), room_lock(name):
            room = require_room(db, name)
            removed_objects = 0
            try:
                removed_objects = store.delete_prefix(
                    prefix=room_prefix(room.name),
                    page_size=get_settings().storage_list_page_size,
                )
            except AppException:
                logger.exception("Failed to purge objects of room %s", name)
            room_crud.hard_delete(db, room)
        forget_room(name)
        logger.info("Room %s deleted (%s objects purged)", name, removed_objects)
        return create_response("删除房间成功", {"name": name, "removedObjects": removed_objects}, HTTP_STATUS_OK)

    # ----------------------------
    # 工具方法
    # ----------------------------
    def _serialize_summary(self, room: Room) -> Dict[str, Any]:
        return {
            "name": room.name,
            "entryCount": len(room.entries or []),
            "createdAt": to_iso(room.create_time),
            "updatedAt": to_iso(room.update_time),
        }

    def _serialize_detail(self, room: Room) -> Dict[str, Any]:
        snapshot = RoomSnapshot.from_model(room)
        data = self._serialize_summary(room)
        data.update(
            {
                "currentFolderId": snapshot.current_folder_id,
                "entries": [entry.to_public_dict() for entry in snapshot.tree],
            }
        )
        return data


room_service = RoomService()
