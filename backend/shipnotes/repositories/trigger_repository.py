"""Trigger queries."""

from typing import List, Optional

from sqlalchemy.orm import Query

from ..models.trigger import ContentTrigger
from .base import BaseRepository


class TriggerRepository(BaseRepository[ContentTrigger]):
    model_class = ContentTrigger
    resource_name = "Trigger"

    def _organization_filter(self, query: Query, organization_id: str) -> Query:
        return query.filter(ContentTrigger.organization_id == organization_id)

    def list_for_organization(self, organization_id: str) -> List[ContentTrigger]:
        return (
            self.db.query(ContentTrigger)
            .filter(ContentTrigger.organization_id == organization_id)
            .order_by(ContentTrigger.created_at.desc())
            .all()
        )

    def find_by_hash(self, organization_id: str, dedupe_hash: str) -> Optional[ContentTrigger]:
        return (
            self.db.query(ContentTrigger)
            .filter(
                ContentTrigger.organization_id == organization_id,
                ContentTrigger.dedupe_hash == dedupe_hash,
            )
            .first()
        )

    def find_matching(
        self, organization_id: str, source_type: str, event_type: str, repository_id: str
    ) -> List[ContentTrigger]:
        """Enabled triggers of *source_type* listening for *event_type* on *repository_id*.

        Event types and targets live in JSON columns, so the final match
        runs in Python over the organization's enabled triggers.
        """
        candidates = (
            self.db.query(ContentTrigger)
            .filter(
                ContentTrigger.organization_id == organization_id,
                ContentTrigger.source_type == source_type,
                ContentTrigger.enabled.is_(True),
            )
            .order_by(ContentTrigger.created_at.asc())
            .all()
        )
        return [
            t for t in candidates
            if event_type in t.event_types and repository_id in t.repository_ids
        ]
