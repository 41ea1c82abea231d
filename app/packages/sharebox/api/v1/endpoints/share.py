"""分享访问路由：凭分享 token（及可选密码）获取文件下载地址。"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.packages.sharebox.api.v1.schemas.entries import EntryResponse, ShareAccessBody
from app.packages.sharebox.core.dependencies import get_db, get_object_store
from app.packages.sharebox.services.entry_service import entry_service
from app.packages.sharebox.services.storage_backends import StorageBackend

router = APIRouter(prefix="/share", tags=["share"])


@router.post("/{token}", response_model=EntryResponse)
def access_share(
    token: str,
    payload: ShareAccessBody,
    db: Session = Depends(get_db),
    store: StorageBackend = Depends(get_object_store),
):
    """过期返回 410，密码错误返回 403。"""
    return entry_service.resolve_share(db, store=store, token=token, password=payload.password)
