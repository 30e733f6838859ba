"""Workflow run, progress and brand-analysis schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models.enums import ToneProfile


class WorkflowProgress(BaseModel):
    """Progress snapshot as served to polling clients."""
    status: str
    currentStep: int
    totalSteps: int
    error: Optional[str] = None
    runId: Optional[str] = None


class WorkflowRunResponse(BaseModel):
    id: str
    organization_id: str
    workflow_type: str
    correlation_id: Optional[str] = None
    status: str
    current_step: int
    total_steps: int
    attempts: int
    result: Optional[Any] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkflowStarted(BaseModel):
    success: bool = True
    message: str
    run_id: str


class BrandAnalyzeRequest(BaseModel):
    # Left as free text: a malformed URL fails the scraping stage.
    url: str = Field(..., min_length=1, max_length=2048)


class BrandExtraction(BaseModel):
    """Structured output expected from the extraction model."""
    companyName: str = Field(..., min_length=1, max_length=255)
    companyDescription: str = Field(..., min_length=1)
    toneProfile: ToneProfile
    customTone: Optional[str] = None
    audience: str = Field(..., min_length=1)


class GeneratedContent(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    markdown: str = Field(..., min_length=1)
