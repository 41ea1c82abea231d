"""房间级互斥：同一房间上的删除/重命名/同步等写操作串行执行。

每个写操作都是“整读条目 -> 内存修改 -> 整写回”，两个并发操作会互相覆盖，
因此按房间名加锁。优先使用 Redis 分布式锁（多进程部署），不可用时回退到进程内锁。
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.exceptions import LockError

from app.packages.sharebox.core.config import get_settings
from app.packages.sharebox.core.exceptions import ConflictError
from app.packages.sharebox.core.logger import logger


class RoomLockBackend:
    """房间锁后端基类。"""

    def acquire(self, room_name: str, timeout: float) -> object | None:  # pragma: no cover - interface definition
        """获取锁并返回句柄，超时返回 ``None``。"""
        raise NotImplementedError

    def release(self, room_name: str, handle: object) -> None:  # pragma: no cover
        raise NotImplementedError

    def forget(self, room_name: str) -> None:
        """房间删除后丢弃其锁状态；Redis 锁随租约过期，无需处理。"""


class RedisRoomLockBackend(RoomLockBackend):
    """基于 Redis 的房间锁；锁自带过期时间，进程崩溃后不会永久占用。"""

    def __init__(self, url: str, *, lease_seconds: float) -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._client.ping()
        self._lease_seconds = lease_seconds

    def acquire(self, room_name: str, timeout: float) -> object | None:
        lock = self._client.lock(self._build_key(room_name), timeout=self._lease_seconds)
        if lock.acquire(blocking=True, blocking_timeout=timeout):
            return lock
        return None

    def release(self, room_name: str, handle: object) -> None:
        try:
            handle.release()  # type: ignore[attr-defined]
        except LockError:
            logger.warning("Room lock for %s expired before release", room_name)

    @staticmethod
    def _build_key(room_name: str) -> str:
        return f"room-lock:{room_name}"


class InMemoryRoomLockBackend(RoomLockBackend):
    """进程内锁表，用于测试或缺少 Redis 的单进程部署。"""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def acquire(self, room_name: str, timeout: float) -> object | None:
        with self._guard:
            lock = self._locks.setdefault(room_name, threading.Lock())
        if lock.acquire(timeout=timeout):
            return lock
        return None

    def release(self, room_name: str, handle: object) -> None:
        handle.release()  # type: ignore[attr-defined]

    def forget(self, room_name: str) -> None:
        with self._guard:
            lock = self._locks.get(room_name)
            # 仍被持有时保留
            if lock is not None and not lock.locked():
                del self._locks[room_name]


_backend: Optional[RoomLockBackend] = None


def _get_backend() -> RoomLockBackend:
    global _backend
    if _backend is not None:
        return _backend

    settings = get_settings()
    choice = (settings.room_lock_backend or "auto").lower()
    lease = max(settings.storage_operation_timeout_seconds * 2, 60.0)
    if choice == "memory":
        _backend = InMemoryRoomLockBackend()
        return _backend
    try:
        backend = RedisRoomLockBackend(settings.redis_url, lease_seconds=lease)
        logger.info("Room locks backed by Redis at %s", settings.redis_url)
        _backend = backend
    except redis.RedisError as exc:
        if choice == "redis":
            raise
        logger.warning("Redis unavailable (%s), falling back to in-process room locks", exc)
        _backend = InMemoryRoomLockBackend()
    return _backend


def reset_backend(backend: Optional[RoomLockBackend] = None) -> None:
    """替换当前锁后端（测试用）。"""
    global _backend
    _backend = backend


@contextmanager
def room_lock(room_name: str, *, timeout: Optional[float] = None) -> Iterator[None]:
    """持有房间锁执行代码块；等待超时抛出 ``ConflictError``。"""
    backend = _get_backend()
    wait = get_settings().room_lock_timeout_seconds if timeout is None else timeout
    handle = backend.acquire(room_name, wait)
    if handle is None:
        raise ConflictError("房间正在处理其他操作，请稍后重试")
    try:
        yield
    finally:
        backend.release(room_name, handle)


def forget_room(room_name: str) -> None:
    """释放已删除房间在锁后端中的残留状态。"""
    _get_backend().forget(room_name)
