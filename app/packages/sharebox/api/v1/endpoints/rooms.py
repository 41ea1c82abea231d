"""房间管理路由：创建、列表、详情、删除、密码校验、游标与同步。"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.packages.sharebox.api.v1.schemas.rooms import (
    RoomCreateBody,
    RoomCursorBody,
    RoomDetailResponse,
    RoomListResponse,
    RoomMutationResponse,
    RoomVerifyBody,
    SyncResponse,
)
from app.packages.sharebox.core.dependencies import get_db, get_object_store
from app.packages.sharebox.services.room_service import room_service
from app.packages.sharebox.services.storage_backends import StorageBackend
from app.packages.sharebox.services.sync_service import reconcile_room

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("", response_model=RoomListResponse)
def list_rooms(db: Session = Depends(get_db)):
    return room_service.list_rooms(db)


@router.post("", response_model=RoomDetailResponse)
def create_room(payload: RoomCreateBody, db: Session = Depends(get_db)):
    """创建房间；同名房间已存在时返回 409。"""
    return room_service.create_room(db, name=payload.name, password=payload.password)


@router.get("/{name}", response_model=RoomDetailResponse)
def get_room(name: str, db: Session = Depends(get_db)):
    return room_service.get_room(db, name=name)


@router.delete("/{name}", response_model=RoomMutationResponse)
def delete_room(
    name: str,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """删除房间记录，并尽力清理该房间在对象存储中的全部对象。"""
    return room_service.delete_room(db, name=name, store=store)


@router.post("/{name}/verify", response_model=RoomMutationResponse)
def verify_room(name: str, payload: RoomVerifyBody, db: Session = Depends(get_db)):
    return room_service.verify_room_password(db, name=name, password=payload.password)


@router.patch("/{name}", response_model=RoomMutationResponse)
def update_cursor(name: str, payload: RoomCursorBody, db: Session = Depends(get_db)):
    """更新当前目录游标；必须指向存在的文件夹或为空。"""
    return room_service.update_cursor(db, name=name, folder_id=payload.currentFolderId)


@router.post("/{name}/sync", response_model=SyncResponse)
def sync_room(
    name: str,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """以对象存储为准修复房间条目：清理失效条目、重新挂接、补录缺失条目。

    仅在有变化时写回数据库；重复调用不会产生新的变化。
    """
    return reconcile_room(db, store=store, room_name=name)
