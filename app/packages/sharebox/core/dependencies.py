"""依赖注入模块：封装 FastAPI 中复用度高的依赖函数。"""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy.orm import Session

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.db.session import SessionLocal
from app.packages.sharebox.services.storage_backends import StorageBackend, build_backend


def get_db() -> Generator[Session, None, None]:
    """生成一个数据库会话，并在请求结束后自动关闭。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_object_store() -> StorageBackend:
    """对象存储客户端在进程内只构建一次，通过依赖注入传给各服务。"""
    return build_backend(get_settings())
