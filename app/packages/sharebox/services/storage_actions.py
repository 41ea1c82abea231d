"""级联存储动作：先规划动作列表，再并发执行并逐条记录结果。

删除/重命名子树时每个对象的存储调用彼此独立，单个失败只记录日志，
不会中断其余动作，也不会阻止随后的元数据写回。整体超时则视为可重试失败，
此时尚未写回任何元数据。
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional

from app.packages.sharebox.core.exceptions import StorageUnavailableError
from app.packages.sharebox.core.logger import logger
from app.packages.sharebox.services.storage_backends import StorageBackend


class ActionKind(str, Enum):
    DELETE = "delete"
    DELETE_PREFIX = "delete_prefix"
    MOVE = "move"
    PUT_MARKER = "put_marker"


@dataclass(frozen=True)
class StorageAction:
    kind: ActionKind
    key: str
    dest_key: Optional[str] = None
    # 动作所属条目，便于调用方按条目汇总结果
    entry_id: Optional[str] = None

    @classmethod
    def delete(cls, key: str, *, entry_id: Optional[str] = None) -> "StorageAction":
        return cls(ActionKind.DELETE, key, entry_id=entry_id)

    @classmethod
    def delete_prefix(cls, prefix: str, *, entry_id: Optional[str] = None) -> "StorageAction":
        return cls(ActionKind.DELETE_PREFIX, prefix, entry_id=entry_id)

    @classmethod
    def move(cls, key: str, dest_key: str, *, entry_id: Optional[str] = None) -> "StorageAction":
        return cls(ActionKind.MOVE, key, dest_key=dest_key, entry_id=entry_id)

    @classmethod
    def put_marker(cls, key: str, *, entry_id: Optional[str] = None) -> "StorageAction":
        return cls(ActionKind.PUT_MARKER, key, entry_id=entry_id)

    def run(self, store: StorageBackend) -> None:
        if self.kind is ActionKind.DELETE:
            store.delete_object(key=self.key)
        elif self.kind is ActionKind.DELETE_PREFIX:
            store.delete_prefix(prefix=self.key)
        elif self.kind is ActionKind.MOVE:
            store.move_object(source_key=self.key, dest_key=self.dest_key or "")
        elif self.kind is ActionKind.PUT_MARKER:
            store.put_object(key=self.key, data=b"", content_type="application/octet-stream")


@dataclass(frozen=True)
class ActionResult:
    action: StorageAction
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.action.kind.value,
            "key": self.action.key,
            "destKey": self.action.dest_key,
            "entryId": self.action.entry_id,
            "ok": self.ok,
            "error": self.error,
        }


def _run_one(store: StorageBackend, action: StorageAction) -> ActionResult:
    try:
        action.run(store)
    except Exception as exc:  # noqa: BLE001 - 单个动作失败不影响其余动作
        logger.exception("Storage %s failed for %s", action.kind.value, action.key)
        return ActionResult(action=action, ok=False, error=str(getattr(exc, "detail", exc)))
    return ActionResult(action=action, ok=True)


def execute_actions(
    store: StorageBackend,
    actions: Iterable[StorageAction],
    *,
    max_workers: int = 8,
    timeout: Optional[float] = None,
) -> List[ActionResult]:
    """并发执行动作并按输入顺序返回结果；全部动作结束后才返回。

    超过 ``timeout`` 仍有动作未结束时抛出 ``StorageUnavailableError``。
    """
    planned = list(actions)
    if not planned:
        return []

    pool = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(planned))), thread_name_prefix="storage")
    try:
        futures = [pool.submit(_run_one, store, action) for action in planned]
        _, pending = wait(futures, timeout=timeout)
        if pending:
            for future in pending:
                future.cancel()
            logger.error("Storage fan-out timed out: %s of %s actions unfinished", len(pending), len(planned))
            raise StorageUnavailableError("对象存储操作超时，请稍后重试", {"pending": len(pending)})
        return [future.result() for future in futures]
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def failed_results(results: Iterable[ActionResult]) -> List[ActionResult]:
    return [result for result in results if not result.ok]
