"""Inbound provider webhooks."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..core.context import ServiceContext, get_services
from ..database import get_db
from ..services.webhook_service import WebhookGateway

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/{provider}/{organization_id}/{integration_id}/{repository_id}")
async def receive_webhook(
    provider: str,
    organization_id: str,
    integration_id: str,
    repository_id: str,
    request: Request,
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    """
    Receive a provider webhook for one tracked repository.

    The route itself is the tenant claim: the integration must belong to
    the organization and the repository to the integration. The body is
    read raw so the provider signature is checked over the exact bytes.
    """
    body = await request.body()
    result = WebhookGateway(db, services).receive(
        provider,
        organization_id,
        integration_id,
        repository_id,
        body,
        dict(request.headers),
    )
    return JSONResponse(status_code=result.status_code, content=result.body)
