"""Trigger schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.enums import (
    CronFrequency, OutputType, PublishDestination, TriggerSourceType, WebhookEventType,
)


class CronConfig(BaseModel):
    """Cadence of a cron trigger. Unset minute/hour mean 0."""
    frequency: CronFrequency
    hour: Optional[int] = Field(default=None, ge=0, le=23)
    minute: Optional[int] = Field(default=None, ge=0, le=59)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)


class SourceConfig(BaseModel):
    event_types: List[WebhookEventType] = Field(default_factory=list)
    cron: Optional[CronConfig] = None


class TriggerTargets(BaseModel):
    repository_ids: List[str] = Field(..., min_length=1)

    @field_validator("repository_ids")
    @classmethod
    def dedupe_ids(cls, v: List[str]) -> List[str]:
        seen: list[str] = []
        for repo_id in v:
            if not repo_id:
                raise ValueError("Repository ids must be non-empty")
            if repo_id not in seen:
                seen.append(repo_id)
        return seen


class OutputConfig(BaseModel):
    publish_destination: Optional[PublishDestination] = None


class TriggerCreate(BaseModel):
    source_type: TriggerSourceType
    source_config: SourceConfig = Field(default_factory=SourceConfig)
    targets: TriggerTargets
    output_type: OutputType
    output_config: Optional[OutputConfig] = None
    enabled: bool = True


class TriggerUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    source_type: Optional[TriggerSourceType] = None
    source_config: Optional[SourceConfig] = None
    targets: Optional[TriggerTargets] = None
    output_type: Optional[OutputType] = None
    output_config: Optional[OutputConfig] = None
    enabled: Optional[bool] = None


class TriggerResponse(BaseModel):
    id: str
    organization_id: str
    source_type: str
    source_config: dict
    targets: dict
    output_type: str
    output_config: Optional[dict] = None
    enabled: bool
    schedule_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TriggerRunResponse(BaseModel):
    success: bool
    run_id: Optional[str] = None
    message: str
