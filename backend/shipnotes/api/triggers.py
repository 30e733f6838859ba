"""Trigger catalog API and the schedule callback."""

import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Response
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_org_member
from ..core.context import ServiceContext, get_services
from ..database import get_db
from ..exceptions import AuthenticationError
from ..schemas.trigger import TriggerCreate, TriggerResponse, TriggerRunResponse, TriggerUpdate
from ..services.trigger_service import TriggerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/organizations/{organization_id}/triggers", tags=["triggers"])

# Called by the external scheduler, authenticated by the shared callback token.
schedule_router = APIRouter(prefix="/api/triggers", tags=["triggers"])


def _service(
    db: Session = Depends(get_db),
    services: ServiceContext = Depends(get_services),
) -> TriggerService:
    return TriggerService(db, services)


@router.get("", response_model=List[TriggerResponse])
def list_triggers(
    organization_id: str,
    service: TriggerService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.list_triggers(organization_id)


@router.post("", response_model=TriggerResponse, status_code=201)
def create_trigger(
    organization_id: str,
    data: TriggerCreate,
    service: TriggerService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """Create a trigger; cron triggers register their schedule immediately."""
    return service.create_trigger(organization_id, data)


@router.get("/{trigger_id}", response_model=TriggerResponse)
def get_trigger(
    organization_id: str,
    trigger_id: str,
    service: TriggerService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.get_trigger(organization_id, trigger_id)


@router.patch("/{trigger_id}", response_model=TriggerResponse)
def update_trigger(
    organization_id: str,
    trigger_id: str,
    data: TriggerUpdate,
    service: TriggerService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    return service.update_trigger(organization_id, trigger_id, data)


@router.delete("/{trigger_id}", status_code=204)
def delete_trigger(
    organization_id: str,
    trigger_id: str,
    service: TriggerService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """Delete a trigger. Deleting a missing trigger succeeds."""
    service.delete_trigger(organization_id, trigger_id)
    return Response(status_code=204)


@router.post("/{trigger_id}/run", response_model=TriggerRunResponse, status_code=202)
def run_trigger(
    organization_id: str,
    trigger_id: str,
    service: TriggerService = Depends(_service),
    auth: AuthContext = Depends(require_org_member),
):
    """Run an enabled trigger now."""
    run = service.run_now(organization_id, trigger_id, None if auth.is_anonymous else auth.user_id)
    return TriggerRunResponse(success=True, run_id=run.id, message="Schedule triggered successfully")


@schedule_router.post("/{trigger_id}/scheduled-run", response_model=TriggerRunResponse)
def scheduled_run(
    trigger_id: str,
    authorization: Optional[str] = Header(default=None),
    service: TriggerService = Depends(_service),
    services: ServiceContext = Depends(get_services),
):
    """Schedule callback. Missing or disabled triggers are acknowledged and ignored."""
    expected = services.settings.schedule_callback_token
    if expected:
        supplied = (authorization or "").removeprefix("Bearer ").strip()
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            raise AuthenticationError("Invalid schedule callback token")

    run = service.run_scheduled(trigger_id)
    if run is None:
        return TriggerRunResponse(success=True, message="Trigger skipped")
    return TriggerRunResponse(success=True, run_id=run.id, message="Scheduled run started")
