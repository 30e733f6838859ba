"""Organizations, membership, brand settings and generated posts."""

import logging
import uuid
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.auth import AuthContext
from ..core.context import ServiceContext
from ..exceptions import ForbiddenError, NotFoundError, SlugTakenError, UpstreamServiceError
from ..models.content import BrandSettings, Post
from ..models.enums import MemberRole
from ..models.integration import Integration, Repository, RepositoryOutput
from ..models.organization import Member, Organization, User
from ..models.trigger import ContentTrigger
from ..models.workflow import WorkflowRun, WorkflowStep
from ..schemas.organization import OrganizationCreate

logger = logging.getLogger(__name__)


class OrganizationService:
    """Tenant lifecycle.

    Public methods:
        create_organization -- unique slug; the caller becomes owner
        get_organization
        delete_organization -- owners only; removes every tenant row
        get_brand_settings
        list_posts          -- newest first
    """

    def __init__(self, db: Session, services: ServiceContext):
        self.db = db
        self.services = services

    def _ensure_user(self, auth: AuthContext) -> User:
        user = self.db.get(User, auth.user_id)
        if user is None:
            user = User(id=auth.user_id, name=auth.name or "", email=auth.email)
            self.db.add(user)
            self.db.flush()
        return user

    def create_organization(self, data: OrganizationCreate, auth: AuthContext) -> Organization:
        if self.db.query(Organization.id).filter(Organization.slug == data.slug).first():
            raise SlugTakenError(data.slug)

        organization = Organization(
            id=str(uuid.uuid4()),
            name=data.name.strip(),
            slug=data.slug,
            website_url=data.website_url,
        )
        try:
            user = self._ensure_user(auth)
            self.db.add(organization)
            self.db.flush()
            self.db.add(Member(
                id=str(uuid.uuid4()),
                organization_id=organization.id,
                user_id=user.id,
                role=MemberRole.OWNER.value,
            ))
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise SlugTakenError(data.slug) from e

        self.db.refresh(organization)
        logger.info(
            "Organization created",
            extra={"organization_id": organization.id, "user_id": auth.user_id},
        )
        return organization

    def get_organization(self, organization_id: str) -> Organization:
        organization = self.db.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError("Organization")
        return organization

    def delete_organization(self, organization_id: str, auth: AuthContext) -> None:
        """Delete the organization and everything it owns, children first."""
        organization = self.get_organization(organization_id)
        if not auth.is_anonymous:
            role = (
                self.db.query(Member.role)
                .filter(Member.organization_id == organization.id, Member.user_id == auth.user_id)
                .scalar()
            )
            if role != MemberRole.OWNER.value:
                raise ForbiddenError("Only owners can delete an organization")

        self._remove_schedules(organization.id)

        run_ids = [r.id for r in self.db.query(WorkflowRun.id).filter(WorkflowRun.organization_id == organization.id)]
        integration_ids = [
            i.id for i in self.db.query(Integration.id).filter(Integration.organization_id == organization.id)
        ]
        repo_ids = []
        if integration_ids:
            repo_ids = [
                r.id for r in self.db.query(Repository.id).filter(Repository.integration_id.in_(integration_ids))
            ]

        try:
            if run_ids:
                self.db.query(WorkflowStep).filter(
                    WorkflowStep.run_id.in_(run_ids)
                ).delete(synchronize_session=False)
            self.db.query(WorkflowRun).filter(
                WorkflowRun.organization_id == organization.id
            ).delete(synchronize_session=False)
            self.db.query(Post).filter(Post.organization_id == organization.id).delete(synchronize_session=False)
            self.db.query(BrandSettings).filter(
                BrandSettings.organization_id == organization.id
            ).delete(synchronize_session=False)
            self.db.query(ContentTrigger).filter(
                ContentTrigger.organization_id == organization.id
            ).delete(synchronize_session=False)
            if repo_ids:
                self.db.query(RepositoryOutput).filter(
                    RepositoryOutput.repository_id.in_(repo_ids)
                ).delete(synchronize_session=False)
            if integration_ids:
                self.db.query(Repository).filter(
                    Repository.integration_id.in_(integration_ids)
                ).delete(synchronize_session=False)
            self.db.query(Integration).filter(
                Integration.organization_id == organization.id
            ).delete(synchronize_session=False)
            self.db.query(Member).filter(Member.organization_id == organization.id).delete(synchronize_session=False)
            self.db.query(Organization).filter(Organization.id == organization.id).delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Organization deleted",
            extra={"organization_id": organization_id, "runs": len(run_ids), "repositories": len(repo_ids)},
        )

    def _remove_schedules(self, organization_id: str) -> None:
        scheduled = (
            self.db.query(ContentTrigger.id, ContentTrigger.schedule_id)
            .filter(ContentTrigger.organization_id == organization_id, ContentTrigger.schedule_id.isnot(None))
            .all()
        )
        for trigger_id, schedule_id in scheduled:
            try:
                self.services.scheduler.delete_schedule(schedule_id)
            except UpstreamServiceError as e:
                # The callback ignores deleted triggers, so a leftover schedule is inert
                logger.warning(
                    "Could not remove schedule during organization deletion: %s", e.message,
                    extra={"trigger_id": trigger_id, "schedule_id": schedule_id},
                )

    def get_brand_settings(self, organization_id: str) -> BrandSettings:
        row = (
            self.db.query(BrandSettings)
            .filter(BrandSettings.organization_id == organization_id)
            .first()
        )
        if row is None:
            raise NotFoundError("Brand settings")
        return row

    def list_posts(self, organization_id: str, limit: int = 50) -> List[Post]:
        return (
            self.db.query(Post)
            .filter(Post.organization_id == organization_id)
            .order_by(Post.created_at.desc())
            .limit(limit)
            .all()
        )
