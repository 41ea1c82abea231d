"""房间锁单元测试（进程内后端）。"""

import threading

import pytest

from app.packages.sharebox.core.exceptions import ConflictError
from app.packages.sharebox.core.room_lock import InMemoryRoomLockBackend, forget_room, reset_backend, room_lock


def test_busy_room_times_out_with_conflict():
    entered = threading.Event()
    release = threading.Event()

    def holder():
        with room_lock("demo"):
            entered.set()
            release.wait(5)

    worker = threading.Thread(target=holder)
    worker.start()
    try:
        assert entered.wait(5)
        with pytest.raises(ConflictError):
            with room_lock("demo", timeout=0.05):
                pass
    finally:
        release.set()
        worker.join()

    # 释放后可再次获取
    with room_lock("demo", timeout=0.05):
        pass


def test_rooms_are_locked_independently():
    with room_lock("alpha", timeout=0.05):
        with room_lock("beta", timeout=0.05):
            pass


def test_forgotten_room_drops_idle_lock_only():
    backend = InMemoryRoomLockBackend()
    reset_backend(backend)

    with room_lock("gone"):
        forget_room("gone")
        assert "gone" in backend._locks
    forget_room("gone")

    assert "gone" not in backend._locks
    # 同名房间重建后仍可加锁
    with room_lock("gone", timeout=0.05):
        pass
