"""测试夹具：为 pytest 提供数据库、对象存储与客户端的共享配置。"""

import os
import tempfile
from typing import Generator

# 必须在导入应用之前设置，配置对象会被缓存
_TMP_ROOT = tempfile.mkdtemp(prefix="sharebox_tests_")
TEST_DB_PATH = os.path.join(_TMP_ROOT, "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["LOG_DIR"] = os.path.join(_TMP_ROOT, "log")
os.environ["STORAGE_TYPE"] = "LOCAL"
os.environ["STORAGE_LOCAL_ROOT"] = os.path.join(_TMP_ROOT, "storage")
os.environ["ROOM_LOCK_BACKEND"] = "memory"
os.environ["TIMEZONE"] = "UTC"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app.main import app  # noqa: E402
from app.packages.sharebox.core.dependencies import get_db, get_object_store  # noqa: E402
from app.packages.sharebox.core.room_lock import InMemoryRoomLockBackend, reset_backend  # noqa: E402
from app.packages.sharebox.db import session as db_session  # noqa: E402
from app.packages.sharebox.db.init_db import init_db  # noqa: E402
from app.packages.sharebox.models.room import Room  # noqa: E402
from app.packages.sharebox.services.storage_backends import LocalBackend  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_database() -> Generator[None, None, None]:
    """创建隔离的 SQLite 测试数据库，并在会话结束后清理。"""
    init_db()
    yield
    db_session.engine.dispose()
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)


@pytest.fixture(autouse=True)
def isolate_rooms() -> Generator[None, None, None]:
    """每个用例使用全新的房间表与进程内房间锁。"""
    reset_backend(InMemoryRoomLockBackend())
    yield
    session = db_session.SessionLocal()
    try:
        session.query(Room).delete()
        session.commit()
    finally:
        session.close()
    reset_backend(None)


@pytest.fixture()
def db_session_fixture() -> Generator[Session, None, None]:
    """提供给测试用例使用的数据库会话。"""
    session = db_session.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(tmp_path) -> LocalBackend:
    """每个用例独立的本地对象存储根目录。"""
    return LocalBackend(tmp_path / "objects")


@pytest.fixture()
def client(store):
    """构建 FastAPI TestClient，并注入测试专用的数据库与对象存储依赖。"""
    def override_get_db() -> Generator[Session, None, None]:
        session = db_session.SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_store] = lambda: store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
