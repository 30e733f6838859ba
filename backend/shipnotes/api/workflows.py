"""Workflow progress polling and run status."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_org_member
from ..core.context import ServiceContext, get_services
from ..database import get_db
from ..schemas.workflow import WorkflowProgress, WorkflowRunResponse
from ..services.workflow_engine import WorkflowEngine, get_definition

router = APIRouter(prefix="/api/organizations/{organization_id}/workflows", tags=["workflows"])


@router.get("/runs/{run_id}", response_model=WorkflowRunResponse)
def get_run(
    organization_id: str,
    run_id: str,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    return WorkflowEngine(db, services).get_run(organization_id, run_id)


@router.get("/{workflow_type}/progress", response_model=WorkflowProgress)
def get_progress(
    organization_id: str,
    workflow_type: str,
    trigger_id: Optional[str] = Query(None, description="Scope for per-trigger workflows"),
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    """Latest progress snapshot; ``idle`` when nothing ran recently."""
    definition = get_definition(workflow_type)
    return WorkflowEngine(db, services).get_progress(definition, organization_id, trigger_id)
