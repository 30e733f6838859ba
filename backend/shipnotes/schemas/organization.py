"""Organization, brand settings and post schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    website_url: Optional[str] = Field(default=None, max_length=2048)


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    logo: Optional[str] = None
    website_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BrandSettingsResponse(BaseModel):
    organization_id: str
    company_name: Optional[str] = None
    company_description: Optional[str] = None
    tone_profile: Optional[str] = None
    custom_tone: Optional[str] = None
    custom_instructions: Optional[str] = None
    audience: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PostResponse(BaseModel):
    id: str
    organization_id: str
    workflow_run_id: Optional[str] = None
    title: str
    markdown: str
    content_type: str
    source_metadata: Optional[dict] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
