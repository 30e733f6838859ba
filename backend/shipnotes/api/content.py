"""Brand voice, generated posts and webhook logs of an organization."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_org_member
from ..core.context import ServiceContext, get_services
from ..database import get_db
from ..models.enums import IntegrationType
from ..schemas.organization import BrandSettingsResponse, PostResponse
from ..schemas.webhook import WebhookLogPage
from ..schemas.workflow import BrandAnalyzeRequest, WorkflowStarted
from ..services.organization_service import OrganizationService
from ..services.webhook_logs import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, list_webhook_logs
from ..services.workflow_engine import WorkflowEngine
from ..services.workflows import start_brand_analysis

router = APIRouter(prefix="/api/organizations/{organization_id}", tags=["content"])


@router.get("/brand", response_model=BrandSettingsResponse)
def get_brand_settings(
    organization_id: str,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    return OrganizationService(db, services).get_brand_settings(organization_id)


@router.post("/brand/analyze", response_model=WorkflowStarted, status_code=202)
def analyze_brand(
    organization_id: str,
    data: BrandAnalyzeRequest,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    """Queue a brand analysis of *url*. Poll ``/workflows/brand_analysis/progress``.

    Returns 409 while another analysis of this organization is running.
    """
    OrganizationService(db, services).get_organization(organization_id)
    run = start_brand_analysis(WorkflowEngine(db, services), organization_id, data.url)
    return WorkflowStarted(message="Brand analysis started", run_id=run.id)


@router.get("/posts", response_model=List[PostResponse])
def list_posts(
    organization_id: str,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    """Generated posts, newest first."""
    return OrganizationService(db, services).list_posts(organization_id, limit)


@router.get("/webhook-logs", response_model=WebhookLogPage)
def get_webhook_logs(
    organization_id: str,
    integration_type: Optional[IntegrationType] = Query(None),
    integration_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    return list_webhook_logs(
        services,
        organization_id,
        integration_type=integration_type,
        integration_id=integration_id,
        page=page,
        page_size=page_size,
    )
