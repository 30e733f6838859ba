"""Base repository with shared get-by-ID patterns.

Subclasses specify ``model_class`` and ``resource_name``. Tenant-owned
models also implement ``_organization_filter`` so the base can offer
``get_for_organization``, which reports a row owned by another
organization exactly like a missing row (404, never 403).
"""

from typing import TypeVar, Generic, Optional, Type
from sqlalchemy.orm import Session, Query

from ..database import Base
from ..exceptions import NotFoundError

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Shared repository logic for SQLAlchemy models.

    Class variables to set in subclasses:
        model_class:   The SQLAlchemy model (e.g., Integration)
        resource_name: Human label used in not-found messages
    """

    model_class: Type[ModelT]
    resource_name: str = "Resource"

    def __init__(self, db: Session):
        self.db = db

    def _base_query(self) -> Query:
        return self.db.query(self.model_class)

    def _organization_filter(self, query: Query, organization_id: str) -> Query:
        """Restrict *query* to one organization. Override in tenant-owned repositories."""
        raise NotImplementedError

    def get_by_id(self, entity_id: str) -> ModelT:
        """Get entity by primary key. Raises NotFoundError if missing."""
        entity = self.get_by_id_optional(entity_id)
        if entity is None:
            raise NotFoundError(self.resource_name)
        return entity

    def get_by_id_optional(self, entity_id: str) -> Optional[ModelT]:
        return self._base_query().filter(self.model_class.id == entity_id).first()

    def get_for_organization(self, entity_id: str, organization_id: str) -> ModelT:
        """Get entity by id within one organization. Raises NotFoundError otherwise."""
        query = self._base_query().filter(self.model_class.id == entity_id)
        entity = self._organization_filter(query, organization_id).first()
        if entity is None:
            raise NotFoundError(self.resource_name)
        return entity
