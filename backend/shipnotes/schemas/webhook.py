"""Webhook gateway and webhook log schemas."""

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from ..models.enums import IntegrationType, LogDirection, LogStatus

ROUTE_ID_PATTERN = r"^[A-Za-z0-9_\-]{1,64}$"


class WebhookRouteParams(BaseModel):
    """Path parameters of the gateway route, validated before any lookup."""
    provider: str = Field(..., min_length=1)
    organization_id: str = Field(..., pattern=ROUTE_ID_PATTERN)
    integration_id: str = Field(..., pattern=ROUTE_ID_PATTERN)
    repository_id: str = Field(..., pattern=ROUTE_ID_PATTERN)


class WebhookReceived(BaseModel):
    received: bool = True
    message: str
    data: Optional[Any] = None


def new_log_id() -> str:
    return f"log_{uuid.uuid4().hex[:8]}"


class WebhookLogEntry(BaseModel):
    """One inbound delivery or outbound workflow outcome."""
    id: str = Field(default_factory=new_log_id)
    reference_id: Optional[str] = None
    title: str
    integration_type: IntegrationType
    direction: LogDirection = LogDirection.INCOMING
    status: LogStatus
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    payload: Optional[Any] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WebhookLogPage(BaseModel):
    logs: List[WebhookLogEntry]
    total: int
    page: int
    page_size: int
    total_pages: int
