"""房间条目路由：新建文件夹、上传、下载地址、重命名、删除与分享设置。"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from app.packages.sharebox.api.v1.schemas.entries import (
    EntryMutationResponse,
    EntryResponse,
    FolderCreateBody,
    RenameBody,
    ShareOptionsBody,
    UploadResponse,
)
from app.packages.sharebox.core.dependencies import get_db, get_object_store
from app.packages.sharebox.services.entry_service import entry_service
from app.packages.sharebox.services.storage_backends import StorageBackend

router = APIRouter(prefix="/rooms/{name}", tags=["entries"])


@router.post("/folders", response_model=EntryResponse)
def create_folder(
    name: str,
    payload: FolderCreateBody,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    return entry_service.create_folder(db, store=store, room_name=name, name=payload.name, parent_id=payload.parentId)


@router.post("/files", response_model=UploadResponse)
def upload_files(
    name: str,
    files: List[UploadFile] = File(...),
    parent_id: Optional[str] = Form(None, alias="parentId"),
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """上传一个或多个文件到指定文件夹（缺省为房间根目录），逐个返回结果。"""
    materials = []
    try:
        for up in files:
            materials.append((up.filename, up.file.read(), up.content_type))
    finally:
        for up in files:
            up.file.close()
    return entry_service.upload_files(db, store=store, room_name=name, parent_id=parent_id or None, files=materials)


@router.get("/files/{entry_id}", response_model=EntryResponse)
def get_file_url(
    name: str,
    entry_id: str,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """返回文件的临时签名下载地址。"""
    return entry_service.get_file_url(db, store=store, room_name=name, entry_id=entry_id)


@router.patch("/entries/{entry_id}", response_model=EntryMutationResponse)
def rename_entry(
    name: str,
    entry_id: str,
    payload: RenameBody,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """重命名文件或文件夹；文件夹会同步迁移其存储前缀下的全部对象。"""
    return entry_service.rename(db, store=store, room_name=name, entry_id=entry_id, new_name=payload.newName)


@router.delete("/entries/{entry_id}", response_model=EntryMutationResponse)
def delete_entry(
    name: str,
    entry_id: str,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """删除条目及其全部后代；存储删除失败会体现在返回的动作结果中。"""
    return entry_service.delete(db, store=store, room_name=name, entry_id=entry_id)


@router.put("/entries/{entry_id}/share", response_model=EntryResponse)
def set_share_options(
    name: str,
    entry_id: str,
    payload: ShareOptionsBody,
    db: Session = Depends(get_db),
):
    return entry_service.set_share_options(
        db,
        room_name=name,
        entry_id=entry_id,
        enabled=payload.enabled,
        expires_at=payload.expiresAt,
        password=payload.sharedPassword,
    )
