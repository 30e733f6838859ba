"""Integration, Repository and RepositoryOutput models.

Relationships are read-only views: children are inserted and deleted
explicitly by the integration service, children before parents, so no
ORM cascade ever runs behind the service's back.
"""

from sqlalchemy import (
    Column, String, DateTime, Boolean, Text, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


class Integration(Base):
    """A connected external account (GitHub or Linear).

    ``encrypted_token`` is a vault envelope; it is absent when the
    integration only tracks public repositories.
    """

    __tablename__ = "integrations"

    id = Column(String(50), primary_key=True)
    organization_id = Column(String(50), ForeignKey("organizations.id"), nullable=False, index=True)
    # Allowed values: github, linear
    provider = Column(String(20), nullable=False, default="github")
    created_by_user_id = Column(String(50), nullable=True)
    display_name = Column(String(255), nullable=False)
    encrypted_token = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    repositories = relationship(
        "Repository",
        primaryjoin="Integration.id == Repository.integration_id",
        order_by="Repository.created_at",
        viewonly=True,
    )


class Repository(Base):
    """An owner/repo pair tracked under an integration."""

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("integration_id", "owner", "repo", name="uq_repository_integration_owner_repo"),
    )

    id = Column(String(50), primary_key=True)
    integration_id = Column(String(50), ForeignKey("integrations.id"), nullable=False, index=True)
    owner = Column(String(255), nullable=False)
    repo = Column(String(255), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    # Vault envelope of the HMAC secret shared with the provider
    encrypted_webhook_secret = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    integration = relationship(
        "Integration",
        primaryjoin="Repository.integration_id == Integration.id",
        viewonly=True,
    )
    outputs = relationship(
        "RepositoryOutput",
        primaryjoin="Repository.id == RepositoryOutput.repository_id",
        order_by="RepositoryOutput.output_type",
        viewonly=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class RepositoryOutput(Base):
    """Per-repository toggle for one content type."""

    __tablename__ = "repository_outputs"
    __table_args__ = (
        UniqueConstraint("repository_id", "output_type", name="uq_output_repository_type"),
    )

    id = Column(String(50), primary_key=True)
    repository_id = Column(String(50), ForeignKey("repositories.id"), nullable=False, index=True)
    output_type = Column(String(50), nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    # e.g. {"publish_destination": "webflow"}
    config = Column(JSON, nullable=True)
