"""Organization, User and Member models.

The organization is the tenant boundary: every other table carries an
``organization_id`` (directly or through its parent) and every query is
scoped by it.
"""

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from ..database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False)
    # URL-safe, globally unique
    slug = Column(String(100), nullable=False, unique=True)
    logo = Column(Text, nullable=True)
    website_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    """User mirrored from the identity provider (``sub`` claim is the id)."""

    __tablename__ = "users"

    id = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Member(Base):
    """Membership of a user in an organization.

    Roles: owner, admin, member. Every role can manage the organization's
    integrations and triggers; owners additionally may delete it.
    """

    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_member_org_user"),
    )

    id = Column(String(50), primary_key=True)
    organization_id = Column(String(50), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(50), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
