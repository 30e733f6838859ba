"""Integration registry API: integrations, repositories, outputs and webhook setup.

Every route is nested under the organization; rows of other organizations
answer 404.
"""

from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_org_member
from ..core.context import ServiceContext, get_services
from ..database import get_db
from ..schemas.integration import (
    AvailableRepository,
    IntegrationCreate,
    IntegrationResponse,
    IntegrationUpdate,
    OutputCreate,
    OutputResponse,
    OutputUpdate,
    RepositoryCreate,
    RepositoryResponse,
    RepositoryUpdate,
    WebhookConfig,
)
from ..services.integration_service import IntegrationService

router = APIRouter(prefix="/api/organizations/{organization_id}", tags=["integrations"])


def _service(
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
) -> IntegrationService:
    return IntegrationService(db, services)


# -- Integrations ---------------------------------------------------------

@router.get("/integrations", response_model=List[IntegrationResponse])
def list_integrations(
    organization_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return [IntegrationResponse.from_model(i) for i in service.list_integrations(organization_id)]


@router.post("/integrations", response_model=IntegrationResponse, status_code=201)
def create_integration(
    organization_id: str,
    data: IntegrationCreate,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """Connect a GitHub repository, with a token for private repositories."""
    creator = None if auth.is_anonymous else auth.user_id
    integration = service.create_integration(organization_id, creator, data)
    return IntegrationResponse.from_model(integration)


@router.get("/integrations/{integration_id}", response_model=IntegrationResponse)
def get_integration(
    organization_id: str,
    integration_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return IntegrationResponse.from_model(service.get_integration(organization_id, integration_id))


@router.patch("/integrations/{integration_id}", response_model=IntegrationResponse)
def update_integration(
    organization_id: str,
    integration_id: str,
    data: IntegrationUpdate,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return IntegrationResponse.from_model(service.update_integration(organization_id, integration_id, data))


@router.delete("/integrations/{integration_id}", status_code=204)
def delete_integration(
    organization_id: str,
    integration_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    service.delete_integration(organization_id, integration_id)
    return Response(status_code=204)


@router.get("/integrations/{integration_id}/available-repositories", response_model=List[AvailableRepository])
def list_available_repositories(
    organization_id: str,
    integration_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """Repositories the stored token can see on GitHub (empty without a token)."""
    return service.list_available_repositories(organization_id, integration_id)


# -- Repositories ---------------------------------------------------------

@router.post("/integrations/{integration_id}/repositories", response_model=RepositoryResponse, status_code=201)
def add_repository(
    organization_id: str,
    integration_id: str,
    data: RepositoryCreate,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.add_repository(organization_id, integration_id, data)


@router.patch("/repositories/{repository_id}", response_model=RepositoryResponse)
def update_repository(
    organization_id: str,
    repository_id: str,
    data: RepositoryUpdate,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.update_repository(organization_id, repository_id, data.enabled)


@router.delete("/repositories/{repository_id}", status_code=204)
def delete_repository(
    organization_id: str,
    repository_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    service.delete_repository(organization_id, repository_id)
    return Response(status_code=204)


@router.get("/repositories/{repository_id}/webhook", response_model=WebhookConfig)
def get_webhook_config(
    organization_id: str,
    repository_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """URL and secret to register with the provider."""
    return service.get_webhook_config(organization_id, repository_id)


@router.post("/repositories/{repository_id}/webhook/rotate", response_model=WebhookConfig)
def rotate_webhook_secret(
    organization_id: str,
    repository_id: str,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.rotate_webhook_secret(organization_id, repository_id)


# -- Outputs --------------------------------------------------------------

@router.put("/repositories/{repository_id}/outputs", response_model=OutputResponse)
def configure_output(
    organization_id: str,
    repository_id: str,
    data: OutputCreate,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """Create or replace the output of one content type."""
    return service.configure_output(organization_id, repository_id, data)


@router.patch("/outputs/{output_id}", response_model=OutputResponse)
def update_output(
    organization_id: str,
    output_id: str,
    data: OutputUpdate,
    service: IntegrationService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.update_output(organization_id, output_id, data)
