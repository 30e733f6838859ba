"""Integration, repository and output schemas."""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.enums import OutputType, PublishDestination

_GITHUB_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _validate_github_name(value: str) -> str:
    value = value.strip()
    if not value or not _GITHUB_NAME_RE.match(value):
        raise ValueError("Must contain only letters, digits, '.', '-' or '_'")
    return value


class OutputSettings(BaseModel):
    publish_destination: Optional[PublishDestination] = None


class OutputCreate(BaseModel):
    output_type: OutputType
    enabled: bool = True
    config: Optional[OutputSettings] = None


class OutputUpdate(BaseModel):
    enabled: Optional[bool] = None
    config: Optional[OutputSettings] = None


class OutputResponse(BaseModel):
    id: str
    repository_id: str
    output_type: str
    enabled: bool
    config: Optional[dict] = None

    class Config:
        from_attributes = True


class IntegrationCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=255)
    owner: str = Field(..., max_length=255)
    repo: str = Field(..., max_length=255)
    # GitHub personal access token; omit for public repositories
    token: Optional[str] = Field(default=None, max_length=512)

    @field_validator("owner", "repo")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return _validate_github_name(v)


class IntegrationUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    enabled: Optional[bool] = None


class RepositoryCreate(BaseModel):
    owner: str = Field(..., max_length=255)
    repo: str = Field(..., max_length=255)
    outputs: Optional[List[OutputCreate]] = None

    @field_validator("owner", "repo")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return _validate_github_name(v)


class RepositoryUpdate(BaseModel):
    enabled: bool


class RepositoryResponse(BaseModel):
    id: str
    integration_id: str
    owner: str
    repo: str
    enabled: bool
    created_at: Optional[datetime] = None
    outputs: List[OutputResponse] = []

    class Config:
        from_attributes = True


class IntegrationResponse(BaseModel):
    """Integration as shown to members. The token itself is never returned."""
    id: str
    organization_id: str
    provider: str
    display_name: str
    enabled: bool
    has_token: bool
    created_by_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    repositories: List[RepositoryResponse] = []

    @classmethod
    def from_model(cls, integration) -> "IntegrationResponse":
        return cls(
            id=integration.id,
            organization_id=integration.organization_id,
            provider=integration.provider,
            display_name=integration.display_name,
            enabled=integration.enabled,
            has_token=bool(integration.encrypted_token),
            created_by_user_id=integration.created_by_user_id,
            created_at=integration.created_at,
            updated_at=integration.updated_at,
            repositories=[RepositoryResponse.model_validate(r) for r in integration.repositories],
        )


class AvailableRepository(BaseModel):
    owner: str
    name: str
    full_name: str
    private: bool
    description: Optional[str] = None
    url: str


class WebhookConfig(BaseModel):
    """What the user registers with the provider, out of band."""
    webhook_url: str
    webhook_secret: str
    repository_id: str
    owner: str
    repo: str
