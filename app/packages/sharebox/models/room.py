"""房间模型：一行记录保存一个房间的完整条目森林。

存储规则：
- name：房间名，主键；对象存储中该房间的全部对象位于 ``{name}/`` 前缀下；
- password：bcrypt 哈希；
- current_folder_id：界面游标，指向一个存在的文件夹条目或为空；
- entries：JSON 数组，每项为一个文件/文件夹条目（camelCase 键，见 services.entry_tree）。
"""

from typing import Any, Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.packages.sharebox.models.base import Base, TimestampMixin


class Room(TimestampMixin, Base):
    __tablename__ = "sharebox_rooms"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    current_folder_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    entries: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
