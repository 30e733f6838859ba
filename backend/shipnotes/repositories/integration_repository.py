"""Integration, repository and output queries."""

from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, selectinload

from ..models.integration import Integration, Repository, RepositoryOutput
from .base import BaseRepository


class IntegrationRepository(BaseRepository[Integration]):
    model_class = Integration
    resource_name = "Integration"

    def _organization_filter(self, query: Query, organization_id: str) -> Query:
        return query.filter(Integration.organization_id == organization_id)

    def list_for_organization(self, organization_id: str) -> List[Integration]:
        return (
            self.db.query(Integration)
            .options(selectinload(Integration.repositories).selectinload(Repository.outputs))
            .filter(Integration.organization_id == organization_id)
            .order_by(Integration.created_at.desc())
            .all()
        )


class RepositoryRepository(BaseRepository[Repository]):
    model_class = Repository
    resource_name = "Repository"

    def _organization_filter(self, query: Query, organization_id: str) -> Query:
        return query.join(Integration, Integration.id == Repository.integration_id).filter(
            Integration.organization_id == organization_id
        )

    def find_in_organization(self, organization_id: str, owner: str, repo: str) -> Optional[Repository]:
        """Case-insensitive owner/repo lookup across every integration of the organization."""
        query = self.db.query(Repository).filter(
            func.lower(Repository.owner) == owner.lower(),
            func.lower(Repository.repo) == repo.lower(),
        )
        return self._organization_filter(query, organization_id).first()

    def find_in_integration(self, integration_id: str, owner: str, repo: str) -> Optional[Repository]:
        return (
            self.db.query(Repository)
            .filter(
                Repository.integration_id == integration_id,
                Repository.owner == owner,
                Repository.repo == repo,
            )
            .first()
        )

    def list_for_organization(self, organization_id: str, ids: Optional[Iterable[str]] = None) -> List[Repository]:
        query = self._organization_filter(self.db.query(Repository), organization_id)
        if ids is not None:
            query = query.filter(Repository.id.in_(list(ids)))
        return query.order_by(Repository.created_at.asc()).all()


class OutputRepository(BaseRepository[RepositoryOutput]):
    model_class = RepositoryOutput
    resource_name = "Output"

    def _organization_filter(self, query: Query, organization_id: str) -> Query:
        return (
            query.join(Repository, Repository.id == RepositoryOutput.repository_id)
            .join(Integration, Integration.id == Repository.integration_id)
            .filter(Integration.organization_id == organization_id)
        )

    def find(self, repository_id: str, output_type: str) -> Optional[RepositoryOutput]:
        return (
            self.db.query(RepositoryOutput)
            .filter(
                RepositoryOutput.repository_id == repository_id,
                RepositoryOutput.output_type == output_type,
            )
            .first()
        )
