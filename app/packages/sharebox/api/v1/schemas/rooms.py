"""房间管理请求/响应模型。"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from app.packages.sharebox.api.v1.schemas.common import ResponseEnvelope


class RoomCreateBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class RoomVerifyBody(BaseModel):
    password: str


class RoomCursorBody(BaseModel):
    currentFolderId: Optional[str] = None


class RoomSummary(BaseModel):
    name: str
    entryCount: int
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class RoomDetail(RoomSummary):
    currentFolderId: Optional[str] = None
    entries: list[dict[str, Any]] = Field(default_factory=list)


class SyncResult(BaseModel):
    removed: int
    added: int
    reparented: int


RoomListResponse = ResponseEnvelope[list[RoomSummary]]
RoomDetailResponse = ResponseEnvelope[RoomDetail]
RoomMutationResponse = ResponseEnvelope[dict[str, Any]]
SyncResponse = ResponseEnvelope[SyncResult]
