"""Webhook log lists: capped, most-recent-first, time-limited.

Each entry is pushed onto two lists in one atomic append:
``webhook-logs:{org}:{type}:{integration}`` and ``webhook-logs:{org}:all``.
Both lists are trimmed to ``WEBHOOK_LOG_LIMIT`` entries and their expiry
is refreshed to the organization's retention window.

Appending never raises: logging must not break the delivery it records.
"""

import logging
import math
from typing import Optional

from ..core.context import ServiceContext
from ..models.enums import IntegrationType
from ..schemas.webhook import WebhookLogEntry, WebhookLogPage
from .entitlements import EXTENDED_LOG_RETENTION, EntitlementLookupError

logger = logging.getLogger(__name__)

BASE_RETENTION_DAYS = 7
EXTENDED_RETENTION_DAYS = 30
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def log_list_key(organization_id: str, integration_type: str, integration_id: str) -> str:
    return f"webhook-logs:{organization_id}:{integration_type}:{integration_id}"


def all_logs_key(organization_id: str) -> str:
    return f"webhook-logs:{organization_id}:all"


def retention_days(services: ServiceContext, organization_id: str) -> int:
    """Retention window for the organization's current plan.

    Queried fresh on every call. A failed lookup falls back to the base
    window.
    """
    try:
        allowed = services.entitlements.is_allowed(organization_id, EXTENDED_LOG_RETENTION)
    except EntitlementLookupError as e:
        logger.warning(
            "Entitlement lookup failed, using base log retention: %s", e,
            extra={"organization_id": organization_id},
        )
        return BASE_RETENTION_DAYS
    return EXTENDED_RETENTION_DAYS if allowed else BASE_RETENTION_DAYS


def append_webhook_log(
    services: ServiceContext,
    organization_id: str,
    integration_id: str,
    entry: WebhookLogEntry,
) -> bool:
    """Record *entry* for the organization. Returns False when it was skipped."""
    ttl_seconds = retention_days(services, organization_id) * 24 * 60 * 60
    keys = [
        log_list_key(organization_id, entry.integration_type.value, integration_id),
        all_logs_key(organization_id),
    ]
    stored = services.store.append_log(
        keys,
        entry.model_dump(mode="json"),
        services.settings.webhook_log_limit,
        ttl_seconds,
    )
    if not stored:
        logger.debug("Webhook log not stored", extra={"organization_id": organization_id, "log_id": entry.id})
    return stored


def list_webhook_logs(
    services: ServiceContext,
    organization_id: str,
    integration_type: Optional[IntegrationType] = None,
    integration_id: Optional[str] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> WebhookLogPage:
    """Paginate one organization's logs, newest first.

    With both *integration_type* and *integration_id* the per-integration
    list is read; otherwise the aggregate list, optionally filtered by type.
    """
    page = max(1, page)
    page_size = min(max(1, page_size), MAX_PAGE_SIZE)
    limit = services.settings.webhook_log_limit

    if integration_type is not None and integration_id:
        raw = services.store.list_logs(
            log_list_key(organization_id, integration_type.value, integration_id), limit
        )
    else:
        raw = services.store.list_logs(all_logs_key(organization_id), limit)

    entries: list[WebhookLogEntry] = []
    for item in raw:
        try:
            entry = WebhookLogEntry.model_validate(item)
        except ValueError:
            continue
        if integration_type is not None and entry.integration_type != integration_type:
            continue
        entries.append(entry)

    total = len(entries)
    start = (page - 1) * page_size
    return WebhookLogPage(
        logs=entries[start:start + page_size],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )
