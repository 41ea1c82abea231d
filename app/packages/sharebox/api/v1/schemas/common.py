"""通用响应封装模型：所有接口返回 ``{"msg", "data", "code"}``。"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ResponseEnvelope(BaseModel, Generic[T]):
    msg: str
    data: Optional[T] = None
    code: int
