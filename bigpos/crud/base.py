"""
Base CRUD operations with SQLAlchemy 2.x patterns.

Writes only add and flush; the router owns the transaction through
``bigpos.database.atomic`` so several CRUD calls commit or fail together.
"""
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging
from typing import TypeVar, Generic, Type, Optional, Dict, Any

from bigpos.database import Base
from bigpos.exceptions import NotFoundError

logger = logging.getLogger(__name__)
ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType], label: Optional[str] = None):
        self.model = model
        self.label = label or model.__name__

    def get_or_404(self, db: Session, id: int, *, lock: bool = False) -> ModelType:
        """Get record by ID, optionally locking the row for update"""
        stmt = select(self.model).where(self.model.id == id)
        if lock:
            stmt = stmt.with_for_update()
        obj = db.execute(stmt).scalar_one_or_none()
        if obj is None:
            raise NotFoundError(f"{self.label} not found")
        return obj

    def create(self, db: Session, *, obj_in: Dict[str, Any]) -> ModelType:
        """Add a record to the session and flush so it gets an id."""
        try:
            obj = self.model(**obj_in)
            db.add(obj)
            db.flush()
            return obj
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model.__name__}: {e}")
            raise
