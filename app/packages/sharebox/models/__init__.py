"""模型包初始化，便于统一导入 ORM 实体并触发模型注册。"""

from app.packages.sharebox.models.room import Room

__all__ = ["Room"]
