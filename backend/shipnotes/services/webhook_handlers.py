"""Per-provider webhook handlers.

A handler receives the resolved integration and repository plus the raw
body and headers, and returns a ``HandlerResult``. Handlers never write
webhook logs themselves; the gateway records exactly one entry per
dispatch from the result.

``HANDLERS`` maps every ``Provider`` to a handler, or to ``None`` for
providers the gateway accepts in URLs but cannot process yet. The table is
checked against the enum at import time.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.context import ServiceContext
from ..exceptions import WorkflowInProgressError
from ..models.enums import IntegrationType, Provider, TriggerSourceType, WebhookEventType
from ..models.integration import Integration, Repository
from ..repositories.trigger_repository import TriggerRepository
from .workflow_engine import WorkflowEngine
from .workflows import start_content_generation

logger = logging.getLogger(__name__)

STAR_MILESTONES = (10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)
RELEASE_ACTIONS = ("published", "created", "edited", "prereleased")


@dataclass
class WebhookContext:
    db: Session
    services: ServiceContext
    provider: Provider
    integration: Integration
    repository: Repository
    body: bytes
    headers: Mapping[str, str]

    @property
    def organization_id(self) -> str:
        return self.integration.organization_id

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup; headers are stored lower-cased."""
        return self.headers.get(name.lower())

    def webhook_secret(self) -> Optional[str]:
        return self.services.vault.decrypt_optional(self.repository.encrypted_webhook_secret)


@dataclass
class HandlerResult:
    """Outcome of one dispatch. ``title`` and ``log_payload`` feed the log entry."""
    success: bool
    message: str
    title: str
    status_code: int = 200
    data: Optional[Dict[str, Any]] = None
    reference_id: Optional[str] = None
    log_payload: Optional[Dict[str, Any]] = None


Handler = Callable[[WebhookContext], HandlerResult]


def _failure(title: str, message: str, reference_id: Optional[str] = None) -> HandlerResult:
    return HandlerResult(
        success=False, message=message, title=title, status_code=400, reference_id=reference_id
    )


def verify_hmac_sha256(body: bytes, secret: str, received_hex: str) -> bool:
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    received = received_hex.strip().lower().encode("utf-8", "replace")
    return hmac.compare_digest(expected.encode("ascii"), received)


def verify_github_signature(body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Check ``X-Hub-Signature-256`` (``sha256=<hex>``) in constant time."""
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    return verify_hmac_sha256(body, secret, signature_header[len("sha256="):])


def delivery_key(organization_id: str, delivery_id: str) -> str:
    return f"webhook-delivery:{organization_id}:{delivery_id}"


# ---------------------------------------------------------------------------
# GitHub event normalization
# ---------------------------------------------------------------------------

def is_star_milestone(stars: Optional[int]) -> bool:
    return bool(stars) and stars in STAR_MILESTONES


def normalize_release(action: str, payload: dict) -> Optional[dict]:
    if action not in RELEASE_ACTIONS:
        return None
    release = payload.get("release")
    if not isinstance(release, dict):
        return None
    # Drafts only count when they were just created
    if release.get("draft") and action != "created":
        return None
    return {
        "type": WebhookEventType.RELEASE.value,
        "action": action,
        "data": {
            "tag_name": release.get("tag_name"),
            "name": release.get("name"),
            "body": release.get("body"),
            "prerelease": bool(release.get("prerelease")),
            "draft": bool(release.get("draft")),
            "published_at": release.get("published_at"),
            "url": release.get("html_url"),
        },
    }


def normalize_push(payload: dict) -> Optional[dict]:
    ref = payload.get("ref")
    default_branch = (payload.get("repository") or {}).get("default_branch")
    commits = payload.get("commits") or []
    if not ref or not default_branch or ref != f"refs/heads/{default_branch}":
        return None
    if not commits:
        return None

    head = payload.get("head_commit") or None
    return {
        "type": WebhookEventType.PUSH.value,
        "action": "pushed",
        "data": {
            "ref": ref,
            "branch": default_branch,
            "commits": [
                {
                    "id": c.get("id"),
                    "message": c.get("message"),
                    "author": (c.get("author") or {}).get("name"),
                    "timestamp": c.get("timestamp"),
                    "url": c.get("url"),
                }
                for c in commits
            ],
            "head_commit": {"id": head.get("id"), "message": head.get("message")} if head else None,
        },
    }


def normalize_star(action: str, payload: dict) -> Optional[dict]:
    if action != "created":
        return None
    stars = (payload.get("repository") or {}).get("stargazers_count")
    if stars is None:
        stars = payload.get("star_count")
    return {
        "type": WebhookEventType.STAR.value,
        "action": "created",
        "data": {
            "starred_at": payload.get("starred_at"),
            "user": (payload.get("sender") or {}).get("login"),
            "stargazers_count": stars,
            "milestone": is_star_milestone(stars),
        },
    }


def _run_event(event: dict, repository_full_name: str, delivery: Optional[str]) -> dict:
    """The slice of a normalized event that content runs see."""
    summary = {
        "type": event["type"],
        "action": event["action"],
        "repository": repository_full_name,
        "delivery": delivery,
    }
    if event["type"] == WebhookEventType.RELEASE.value:
        summary["release"] = event["data"]
    elif event["type"] == WebhookEventType.STAR.value:
        summary["stargazers_count"] = event["data"]["stargazers_count"]
    elif event["type"] == WebhookEventType.PUSH.value:
        summary["commit_count"] = len(event["data"]["commits"])
    return summary


def start_matching_runs(ctx: WebhookContext, event: dict, repository_full_name: str,
                        delivery: Optional[str]) -> List[dict]:
    """Start one content run per enabled trigger listening for this event here."""
    if not ctx.repository.enabled:
        return []
    if event["type"] == WebhookEventType.STAR.value and not event["data"]["milestone"]:
        return []

    triggers = TriggerRepository(ctx.db).find_matching(
        ctx.organization_id,
        TriggerSourceType.GITHUB_WEBHOOK.value,
        event["type"],
        ctx.repository.id,
    )
    if not triggers:
        return []

    if not ctx.services.entitlements.has_ai_credits(ctx.organization_id):
        return [{"trigger_id": t.id, "skipped": "credits_exhausted"} for t in triggers]

    engine = WorkflowEngine(ctx.db, ctx.services)
    run_event = _run_event(event, repository_full_name, delivery)
    runs: List[dict] = []
    for trigger in triggers:
        try:
            run = start_content_generation(
                engine,
                trigger,
                IntegrationType.GITHUB,
                integration_id=ctx.integration.id,
                event=run_event,
            )
        except WorkflowInProgressError:
            runs.append({"trigger_id": trigger.id, "skipped": "in_progress"})
            continue
        runs.append({"trigger_id": trigger.id, "run_id": run.id})
    return runs


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def handle_github(ctx: WebhookContext) -> HandlerResult:
    event = ctx.header("X-GitHub-Event")
    delivery = ctx.header("X-GitHub-Delivery")

    if not event:
        return _failure("Missing webhook event header", "Missing X-GitHub-Event header", delivery)

    secret = ctx.webhook_secret()
    if not secret:
        return _failure("Webhook secret missing", "Webhook secret not configured for this repository", delivery)

    signature = ctx.header("X-Hub-Signature-256")
    if not signature:
        return _failure("Signature missing", "Missing X-Hub-Signature-256 header", delivery)
    if not verify_github_signature(ctx.body, signature, secret):
        logger.warning(
            "Webhook signature verification failed",
            extra={"organization_id": ctx.organization_id, "repository_id": ctx.repository.id},
        )
        return _failure("Invalid webhook signature", "Invalid webhook signature", delivery)

    try:
        payload = json.loads(ctx.body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return _failure("Invalid webhook payload", "Invalid JSON payload", delivery)

    if event == "ping":
        return HandlerResult(
            success=True,
            message="Pong! Webhook configured successfully",
            title="Webhook ping received",
            data={"event": "ping", "delivery": delivery},
            reference_id=delivery,
            log_payload={"event": "ping"},
        )

    action = payload.get("action") or ""
    remembered_key = None
    if delivery:
        key = delivery_key(ctx.organization_id, delivery)
        first_seen = ctx.services.store.remember_once(key, ctx.services.settings.webhook_delivery_ttl_seconds)
        if first_seen is False:
            return HandlerResult(
                success=True,
                message="Duplicate delivery ignored",
                title="Duplicate delivery ignored",
                data={"event": event, "delivery": delivery, "duplicate": True},
                reference_id=delivery,
                log_payload={"event": event, "action": action, "duplicate": True},
            )
        if first_seen:
            remembered_key = key

    try:
        return _process_github_event(ctx, event, action, payload, delivery)
    except Exception:
        # Let a redelivery retry the work this attempt could not finish
        if remembered_key:
            ctx.services.store.forget(remembered_key)
        raise


def _process_github_event(
    ctx: WebhookContext, event: str, action: str, payload: dict, delivery: Optional[str]
) -> HandlerResult:
    if event == WebhookEventType.RELEASE.value:
        processed = normalize_release(action, payload)
    elif event == WebhookEventType.PUSH.value:
        processed = normalize_push(payload)
    elif event == WebhookEventType.STAR.value:
        processed = normalize_star(action, payload)
    else:
        return HandlerResult(
            success=True,
            message=f"Ignored {event} event",
            title=f"Ignored {event} event",
            data={"event": event, "action": action, "ignored": True},
            reference_id=delivery,
            log_payload={"event": event, "action": action, "ignored": True},
        )

    if processed is None:
        return HandlerResult(
            success=True,
            message=f"Filtered {event} event",
            title=f"Filtered {event} event",
            data={"event": event, "action": action, "filtered": True},
            reference_id=delivery,
            log_payload={"event": event, "action": action, "filtered": True},
        )

    full_name = (payload.get("repository") or {}).get("full_name") or ctx.repository.full_name
    runs = start_matching_runs(ctx, processed, full_name, delivery)
    logger.info(
        "Processed GitHub event",
        extra={
            "organization_id": ctx.organization_id,
            "repository_id": ctx.repository.id,
            "event": processed["type"],
            "runs_started": sum(1 for r in runs if "run_id" in r),
        },
    )
    return HandlerResult(
        success=True,
        message=f"Processed {processed['type']} event ({processed['action']})",
        title=f"Processed {processed['type']} event",
        data={
            "event": event,
            "delivery": delivery,
            "processed": processed,
            "repository": {"id": ctx.repository.id, "full_name": full_name},
            "runs": runs,
        },
        reference_id=delivery,
        log_payload={"event": event, "action": processed["action"], "data": processed["data"], "runs": runs},
    )


def handle_linear(ctx: WebhookContext) -> HandlerResult:
    delivery = ctx.header("Linear-Delivery")
    signature = ctx.header("Linear-Signature")
    if not signature:
        return _failure("Missing Linear signature", "Missing Linear-Signature header", delivery)

    secret = ctx.webhook_secret()
    if not secret:
        return _failure("Webhook secret missing", "Webhook secret not configured for this repository", delivery)
    if not verify_hmac_sha256(ctx.body, secret, signature):
        return _failure("Invalid webhook signature", "Invalid webhook signature", delivery)

    return HandlerResult(
        success=True,
        message="Linear webhook received",
        title="Linear webhook received",
        data={"has_signature": True},
        reference_id=delivery,
        log_payload={"has_signature": True},
    )


HANDLERS: Dict[Provider, Optional[Handler]] = {
    Provider.GITHUB: handle_github,
    Provider.LINEAR: handle_linear,
    Provider.SLACK: None,
}


def _check_handler_table() -> None:
    missing = set(Provider) - set(HANDLERS)
    if missing:
        raise RuntimeError(f"No webhook handler entry for: {sorted(p.value for p in missing)}")


_check_handler_table()
