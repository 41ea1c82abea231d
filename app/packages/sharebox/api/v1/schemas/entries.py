"""房间条目（文件/文件夹）操作请求/响应模型。"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.packages.sharebox.api.v1.schemas.common import ResponseEnvelope


class FolderCreateBody(BaseModel):
    name: str = Field(..., min_length=1)
    parentId: Optional[str] = None


class RenameBody(BaseModel):
    # 空白名称交给服务层校验，以便返回统一的 InvalidName 错误
    newName: str


class ShareOptionsBody(BaseModel):
    enabled: bool
    expiresAt: Optional[datetime] = None
    sharedPassword: Optional[str] = None


class ShareAccessBody(BaseModel):
    password: Optional[str] = None


EntryResponse = ResponseEnvelope[dict[str, Any]]
UploadResponse = ResponseEnvelope[list[dict[str, Any]]]
EntryMutationResponse = ResponseEnvelope[dict[str, Any]]
