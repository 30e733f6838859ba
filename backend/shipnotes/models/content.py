"""Brand settings and generated posts."""

from sqlalchemy import Column, String, DateTime, Text, JSON, ForeignKey
from sqlalchemy.sql import func
from ..database import Base


class BrandSettings(Base):
    """Brand voice of an organization. One row per organization (upserted)."""

    __tablename__ = "brand_settings"

    id = Column(String(50), primary_key=True)
    organization_id = Column(String(50), ForeignKey("organizations.id"), nullable=False, unique=True)
    company_name = Column(String(255), nullable=True)
    company_description = Column(Text, nullable=True)
    # Allowed values: Conversational, Professional, Casual, Formal
    tone_profile = Column(String(30), nullable=True)
    custom_tone = Column(Text, nullable=True)
    custom_instructions = Column(Text, nullable=True)
    audience = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Post(Base):
    """Generated content. ``workflow_run_id`` makes the save step an upsert."""

    __tablename__ = "posts"

    id = Column(String(50), primary_key=True)
    organization_id = Column(String(50), ForeignKey("organizations.id"), nullable=False, index=True)
    workflow_run_id = Column(String(50), nullable=True, unique=True)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    markdown = Column(Text, nullable=False, default="")
    content_type = Column(String(50), nullable=False)
    source_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
