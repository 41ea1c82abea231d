"""异常处理模块：定义统一的业务异常与响应格式。

业务异常按房间存储的错误分类细分：
- NotFoundError：房间或条目不存在；
- InvalidNameError：名称为空或包含路径分隔符；
- CyclicHierarchyError：父子引用成环，路径解析超出树规模上限；
- StorageUnavailableError：对象存储调用失败或超时；
- ConflictError：名称冲突、房间已存在或房间正被其他操作占用；
- ShareAccessError：分享链接过期或密码错误。
"""

from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.packages.sharebox.core.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_CONFLICT,
    HTTP_STATUS_FORBIDDEN,
    HTTP_STATUS_INTERNAL_SERVER_ERROR,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_SERVICE_UNAVAILABLE,
)


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    def __init__(self, msg: str, code: int = status.HTTP_400_BAD_REQUEST, data=None) -> None:
        super().__init__(status_code=code, detail=msg)
        self.data = data

    @property
    def msg(self) -> str:
        return self.detail


class NotFoundError(AppException):
    def __init__(self, msg: str = "资源不存在", data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_NOT_FOUND, data)


class InvalidNameError(AppException):
    def __init__(self, msg: str = "名称不能为空", data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_BAD_REQUEST, data)


class CyclicHierarchyError(AppException):
    """父子引用成环：元数据已损坏，同步也无法自动修复。"""

    def __init__(self, entry_id: Optional[str] = None) -> None:
        super().__init__(
            "目录层级存在循环引用",
            HTTP_STATUS_INTERNAL_SERVER_ERROR,
            {"entryId": entry_id} if entry_id else None,
        )
        self.entry_id = entry_id


class StorageUnavailableError(AppException):
    def __init__(self, msg: str = "对象存储暂不可用", data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_SERVICE_UNAVAILABLE, data)


class ConflictError(AppException):
    def __init__(self, msg: str = "资源冲突", data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_CONFLICT, data)


class ShareAccessError(AppException):
    def __init__(self, msg: str = "无权访问该分享", code: int = HTTP_STATUS_FORBIDDEN) -> None:
        super().__init__(msg, code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - framework glue
    """将 FastAPI 的 ``HTTPException`` 转换为统一响应格式。"""
    payload = {"msg": exc.detail, "data": getattr(exc, "data", None), "code": exc.status_code}
    return JSONResponse(status_code=exc.status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - framework glue
    """兜底处理：将未捕获异常转换为标准的 500 响应结构。"""
    payload = {
        "msg": "服务器内部错误",
        "data": None,
        "code": HTTP_STATUS_INTERNAL_SERVER_ERROR,
    }
    return JSONResponse(status_code=HTTP_STATUS_INTERNAL_SERVER_ERROR, content=payload)
