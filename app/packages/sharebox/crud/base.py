"""CRUD 基类：为各实体提供通用的数据访问方法。"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from app.packages.sharebox.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    """封装常见的查询、创建与保存逻辑，减少重复代码。"""

    def __init__(self, model: Type[ModelType]):
        self.model = model

    def query(self, db: Session):
        return db.query(self.model)

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        return db.get(self.model, id)

    def create(self, db: Session, obj_in: Dict[str, Any], *, auto_commit: bool = True) -> ModelType:
        db_obj = self.model(**obj_in)
        db.add(db_obj)
        if auto_commit:
            db.commit()
            db.refresh(db_obj)
        return db_obj

    def save(self, db: Session, db_obj: ModelType, *, auto_commit: bool = True) -> ModelType:
        db.add(db_obj)
        if auto_commit:
            db.commit()
            db.refresh(db_obj)
        return db_obj

    def hard_delete(self, db: Session, db_obj: ModelType, *, auto_commit: bool = True) -> None:
        """物理删除行，并提交事务。"""
        db.delete(db_obj)
        if auto_commit:
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
