"""房间 CRUD：元数据持久化协作方（读取房间、整体写回条目与游标）。"""

from __future__ import annotations

from typing import Any, List, Optional

from sqlalchemy.orm import Session

from app.packages.sharebox.crud.base import CRUDBase
from app.packages.sharebox.models.room import Room

_UNSET: Any = object()


class CRUDRoom(CRUDBase[Room]):
    def get_by_name(self, db: Session, name: str) -> Optional[Room]:
        return self.get(db, name)

    def list_all(self, db: Session) -> List[Room]:
        return self.query(db).order_by(Room.create_time.desc()).all()

    def update_room(
        self,
        db: Session,
        room: Room,
        *,
        entries: Any = _UNSET,
        current_folder_id: Any = _UNSET,
    ) -> Room:
        """按需写回 ``entries`` / ``current_folder_id``，未传入的字段保持不变。"""
        if entries is not _UNSET:
            # 赋值新列表，确保 JSON 列被识别为已修改
            room.entries = list(entries)
        if current_folder_id is not _UNSET:
            room.current_folder_id = current_folder_id
        return self.save(db, room)


room_crud = CRUDRoom(Room)
