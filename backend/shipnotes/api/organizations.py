"""Organization lifecycle endpoints."""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_auth, require_org_member
from ..core.context import ServiceContext, get_services
from ..database import get_db
from ..schemas.organization import OrganizationCreate, OrganizationResponse
from ..services.organization_service import OrganizationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


@router.post("", response_model=OrganizationResponse, status_code=201)
def create_organization(
    data: OrganizationCreate,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    """Create an organization. The caller becomes its owner."""
    return OrganizationService(db, services).create_organization(data, auth)


@router.get("/{organization_id}", response_model=OrganizationResponse)
def get_organization(
    organization_id: str,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    return OrganizationService(db, services).get_organization(organization_id)


@router.delete("/{organization_id}", status_code=204)
def delete_organization(
    organization_id: str,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
    auth: AuthContext = Depends(require_org_member),
):
    """Delete the organization with all of its integrations, triggers, runs and posts."""
    OrganizationService(db, services).delete_organization(organization_id, auth)
    logger.info(f"Organization {organization_id} deleted by user {auth.user_id}")
    return Response(status_code=204)
