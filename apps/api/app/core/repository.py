from __future__ import annotations

import uuid
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Persistence seam for one aggregate; services never build ad-hoc queries for it elsewhere."""

    model: type[ModelT]
    resource = ""

    def get(self, session: Session, entity_id: uuid.UUID, *, options: tuple[Any, ...] = ()) -> ModelT | None:
        stmt = select(self.model).where(self.model.id == entity_id)  # type: ignore[attr-defined]
        if options:
            stmt = stmt.options(*options)
        return session.scalar(stmt)

    def require(self, session: Session, entity_id: uuid.UUID, *, options: tuple[Any, ...] = ()) -> ModelT:
        entity = self.get(session, entity_id, options=options)
        if entity is None:
            raise NotFoundError(f"{self.resource} not found")
        return entity

    def add(self, session: Session, entity: ModelT) -> ModelT:
        session.add(entity)
        session.flush()
        return entity
