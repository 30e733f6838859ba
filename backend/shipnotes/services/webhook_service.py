"""Webhook gateway: authenticate the route, dispatch to a provider handler, log the outcome.

Route shape: ``/api/webhooks/{provider}/{organization_id}/{integration_id}/{repository_id}``.

Rejections before dispatch (bad ids, unknown provider, missing or foreign
integration/repository) raise and are never logged, since the tenant is
not yet established. A disabled integration is the one exception: its
organization is verified, so the rejection is logged there. Every
dispatch writes exactly one log entry, including unexpected errors.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..core.context import ServiceContext
from ..exceptions import ForbiddenError, NotFoundError, NotSupportedError, ValidationError
from ..models.enums import IntegrationType, LogStatus, Provider
from ..models.integration import Integration, Repository
from ..schemas.webhook import WebhookLogEntry, WebhookReceived, WebhookRouteParams
from .webhook_handlers import HANDLERS, HandlerResult, WebhookContext
from .webhook_logs import append_webhook_log

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error processing webhook"


@dataclass
class GatewayResponse:
    status_code: int
    body: Dict[str, Any]


def _route_issues(error: PydanticValidationError) -> list:
    return [
        {"path": [str(p) for p in issue["loc"]], "message": issue["msg"]}
        for issue in error.errors()
    ]


class WebhookGateway:
    """Single entry point for inbound provider webhooks."""

    def __init__(self, db: Session, services: ServiceContext):
        self.db = db
        self.services = services

    def receive(
        self,
        provider: str,
        organization_id: str,
        integration_id: str,
        repository_id: str,
        body: bytes,
        headers: Mapping[str, str],
    ) -> GatewayResponse:
        """Process one delivery.

        Raises:
            ValidationError: malformed route ids (400).
            NotSupportedError: unknown provider or one without a handler (501).
            NotFoundError: integration or repository missing (404).
            ForbiddenError: integration/repository belongs elsewhere, or the
                integration is disabled (403).
        """
        try:
            params = WebhookRouteParams(
                provider=provider,
                organization_id=organization_id,
                integration_id=integration_id,
                repository_id=repository_id,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid webhook parameters", issues=_route_issues(e)) from e

        try:
            provider_enum = Provider(params.provider)
        except ValueError:
            raise NotSupportedError() from None
        handler = HANDLERS[provider_enum]
        if handler is None:
            raise NotSupportedError()

        integration = self._resolve_integration(provider_enum, params)
        repository = self._resolve_repository(integration, params.repository_id)

        ctx = WebhookContext(
            db=self.db,
            services=self.services,
            provider=provider_enum,
            integration=integration,
            repository=repository,
            body=body,
            headers={k.lower(): v for k, v in headers.items()},
        )

        try:
            result = handler(ctx)
        except Exception:
            self.db.rollback()
            logger.exception(
                "Webhook processing error",
                extra={
                    "organization_id": integration.organization_id,
                    "integration_id": integration.id,
                    "repository_id": repository.id,
                },
            )
            self._log(provider_enum, integration, HandlerResult(
                success=False,
                message=INTERNAL_ERROR_MESSAGE,
                title="Webhook processing error",
                status_code=500,
            ))
            return GatewayResponse(500, {"error": INTERNAL_ERROR_MESSAGE})

        self._log(provider_enum, integration, result)
        if not result.success:
            return GatewayResponse(400, {"error": result.message or "Webhook processing failed"})
        received = WebhookReceived(message=result.message, data=result.data)
        return GatewayResponse(200, received.model_dump(mode="json"))

    def _resolve_integration(self, provider: Provider, params: WebhookRouteParams) -> Integration:
        integration = self.db.get(Integration, params.integration_id)
        if integration is None or integration.provider != provider.value:
            raise NotFoundError("Integration")
        if integration.organization_id != params.organization_id:
            logger.warning(
                "Webhook addressed an integration of another organization",
                extra={"integration_id": integration.id, "route_organization_id": params.organization_id},
            )
            raise ForbiddenError("Integration does not belong to this organization")
        if not integration.enabled:
            self._log(provider, integration, HandlerResult(
                success=False,
                message="Integration is disabled",
                title="Integration disabled",
                status_code=403,
            ))
            raise ForbiddenError("Integration is disabled")
        return integration

    def _resolve_repository(self, integration: Integration, repository_id: str) -> Repository:
        repository = self.db.get(Repository, repository_id)
        if repository is None:
            raise NotFoundError("Repository")
        if repository.integration_id != integration.id:
            raise ForbiddenError("Repository does not belong to this integration")
        return repository

    def _log(self, provider: Provider, integration: Integration, result: HandlerResult) -> None:
        entry = WebhookLogEntry(
            reference_id=result.reference_id,
            title=result.title,
            integration_type=IntegrationType(provider.value),
            status=LogStatus.SUCCESS if result.success else LogStatus.FAILED,
            status_code=result.status_code,
            error_message=None if result.success else result.message,
            payload=result.log_payload,
        )
        append_webhook_log(self.services, integration.organization_id, integration.id, entry)
