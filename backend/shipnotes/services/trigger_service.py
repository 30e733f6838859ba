"""Trigger catalog: what starts content generation, for which repositories.

A trigger's configuration is normalized (sorted event types and target
ids) and hashed; the hash is unique per organization so two triggers can
never do the same thing. Cron triggers own exactly one external schedule
while enabled, identified by ``trigger-{id}``.
"""

import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.context import ServiceContext
from ..exceptions import (
    CreditsExhaustedError, DuplicateTriggerError, ValidationError, WorkflowInProgressError,
)
from ..models.enums import IntegrationType, LogStatus, TriggerSourceType
from ..models.trigger import ContentTrigger
from ..models.workflow import WorkflowRun
from ..repositories.integration_repository import RepositoryRepository
from ..repositories.trigger_repository import TriggerRepository
from ..schemas.trigger import CronConfig, SourceConfig, TriggerCreate, TriggerTargets, TriggerUpdate
from ..schemas.webhook import WebhookLogEntry
from .scheduling import build_cron_expression, schedule_id_for
from .webhook_logs import append_webhook_log
from .workflow_engine import WorkflowEngine
from .workflows import start_content_generation

logger = logging.getLogger(__name__)


def normalize_source_config(source_config: SourceConfig) -> dict:
    config = source_config.model_dump(mode="json", exclude_none=True)
    config["event_types"] = sorted(set(config.get("event_types", [])))
    return config


def normalize_targets(targets: TriggerTargets) -> dict:
    return {"repository_ids": sorted(set(targets.repository_ids))}


def trigger_hash(source_type: str, source_config: dict, targets: dict, output_type: str) -> str:
    """sha256 of the normalized configuration, stable across key order."""
    payload = json.dumps(
        {
            "source_type": source_type,
            "source_config": source_config,
            "targets": targets,
            "output_type": output_type,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TriggerService:
    """Trigger CRUD, schedule bookkeeping and manual/scheduled runs.

    Public methods:
        list_triggers / get_trigger
        create_trigger  -- validate, dedupe, register schedule
        update_trigger  -- partial; re-validates, re-hashes, re-syncs schedule
        delete_trigger  -- idempotent
        run_now         -- member-initiated run of an enabled trigger
        run_scheduled   -- schedule callback; ignores missing/disabled triggers
    """

    def __init__(self, db: Session, services: ServiceContext):
        self.db = db
        self.services = services
        self.triggers = TriggerRepository(db)
        self.repositories = RepositoryRepository(db)

    def list_triggers(self, organization_id: str) -> List[ContentTrigger]:
        return self.triggers.list_for_organization(organization_id)

    def get_trigger(self, organization_id: str, trigger_id: str) -> ContentTrigger:
        return self.triggers.get_for_organization(trigger_id, organization_id)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(
        self,
        organization_id: str,
        source_type: TriggerSourceType,
        source_config: dict,
        targets: dict,
    ) -> None:
        if source_type.is_webhook and not source_config.get("event_types"):
            raise ValidationError(
                "Webhook triggers require at least one event type",
                field="source_config.event_types",
            )

        if source_type == TriggerSourceType.CRON:
            if not source_config.get("cron"):
                raise ValidationError("Cron triggers require a schedule", field="source_config.cron")
            build_cron_expression(CronConfig.model_validate(source_config["cron"]))

        repo_ids = targets["repository_ids"]
        found = self.repositories.list_for_organization(organization_id, repo_ids)
        missing = sorted(set(repo_ids) - {r.id for r in found})
        if missing:
            raise ValidationError(
                "Target repositories not found in this organization",
                field="targets.repository_ids",
                issues=[{"repository_id": repo_id} for repo_id in missing],
            )

    def _ensure_unique(self, organization_id: str, dedupe_hash: str, exclude_id: Optional[str] = None) -> None:
        existing = self.triggers.find_by_hash(organization_id, dedupe_hash)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateTriggerError()

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def _schedule_destination(self, trigger_id: str) -> str:
        base = self.services.settings.get_public_base_url()
        return f"{base}/api/triggers/{trigger_id}/scheduled-run"

    def _sync_schedule(self, trigger: ContentTrigger) -> None:
        """Make the external schedule match the trigger. Caller commits."""
        scheduler = self.services.scheduler
        wants_schedule = trigger.enabled and trigger.source_type == TriggerSourceType.CRON.value

        if wants_schedule:
            cron = build_cron_expression(CronConfig.model_validate(trigger.source_config["cron"]))
            trigger.schedule_id = scheduler.upsert_schedule(
                schedule_id_for(trigger.id),
                cron,
                self._schedule_destination(trigger.id),
                {"trigger_id": trigger.id},
            )
            logger.info(
                "Schedule registered",
                extra={"trigger_id": trigger.id, "schedule_id": trigger.schedule_id, "cron": cron},
            )
        elif trigger.schedule_id:
            scheduler.delete_schedule(trigger.schedule_id)
            logger.info("Schedule removed", extra={"trigger_id": trigger.id, "schedule_id": trigger.schedule_id})
            trigger.schedule_id = None

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_trigger(self, organization_id: str, data: TriggerCreate) -> ContentTrigger:
        """Create a trigger.

        Raises:
            ValidationError: missing event types / cron config, or a target
                repository outside the organization.
            DuplicateTriggerError: an identical trigger exists.
            UpstreamServiceError: the scheduler is unconfigured or failed.
        """
        source_config = normalize_source_config(data.source_config)
        targets = normalize_targets(data.targets)
        self._validate(organization_id, data.source_type, source_config, targets)

        dedupe_hash = trigger_hash(data.source_type.value, source_config, targets, data.output_type.value)
        self._ensure_unique(organization_id, dedupe_hash)

        trigger = ContentTrigger(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            source_type=data.source_type.value,
            source_config=source_config,
            targets=targets,
            output_type=data.output_type.value,
            output_config=data.output_config.model_dump(mode="json", exclude_none=True) if data.output_config else None,
            dedupe_hash=dedupe_hash,
            enabled=data.enabled,
        )
        try:
            self.db.add(trigger)
            self.db.flush()
            self._sync_schedule(trigger)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateTriggerError() from e
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trigger)
        logger.info(
            "Trigger created",
            extra={"organization_id": organization_id, "trigger_id": trigger.id,
                   "source_type": trigger.source_type, "output_type": trigger.output_type},
        )
        return trigger

    def update_trigger(self, organization_id: str, trigger_id: str, data: TriggerUpdate) -> ContentTrigger:
        trigger = self.get_trigger(organization_id, trigger_id)

        source_type = data.source_type or TriggerSourceType(trigger.source_type)
        source_config = (
            normalize_source_config(data.source_config)
            if data.source_config is not None else trigger.source_config
        )
        targets = normalize_targets(data.targets) if data.targets is not None else trigger.targets
        output_type = data.output_type.value if data.output_type is not None else trigger.output_type

        self._validate(organization_id, source_type, source_config, targets)
        dedupe_hash = trigger_hash(source_type.value, source_config, targets, output_type)
        self._ensure_unique(organization_id, dedupe_hash, exclude_id=trigger.id)

        trigger.source_type = source_type.value
        trigger.source_config = source_config
        trigger.targets = targets
        trigger.output_type = output_type
        trigger.dedupe_hash = dedupe_hash
        if data.output_config is not None:
            trigger.output_config = data.output_config.model_dump(mode="json", exclude_none=True)
        if data.enabled is not None:
            trigger.enabled = data.enabled
        trigger.updated_at = datetime.now(timezone.utc)

        try:
            self._sync_schedule(trigger)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateTriggerError() from e
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trigger)
        return trigger

    def delete_trigger(self, organization_id: str, trigger_id: str) -> None:
        """Delete a trigger and its schedule. A missing trigger is a no-op."""
        trigger = (
            self.db.query(ContentTrigger)
            .filter(ContentTrigger.id == trigger_id, ContentTrigger.organization_id == organization_id)
            .first()
        )
        if trigger is None:
            return

        if trigger.schedule_id:
            self.services.scheduler.delete_schedule(trigger.schedule_id)

        self.db.query(ContentTrigger).filter(
            ContentTrigger.id == trigger.id
        ).delete(synchronize_session=False)
        self.db.commit()
        logger.info("Trigger deleted", extra={"organization_id": organization_id, "trigger_id": trigger_id})

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _ensure_credits(self, organization_id: str) -> None:
        if not self.services.entitlements.has_ai_credits(organization_id):
            raise CreditsExhaustedError()

    def run_now(self, organization_id: str, trigger_id: str, user_id: Optional[str]) -> WorkflowRun:
        """Start a content run for an enabled trigger. The trigger itself is not modified.

        Raises:
            NotFoundError: no such trigger in the organization.
            ValidationError: the trigger is disabled.
            CreditsExhaustedError: the plan has no AI credits left.
            WorkflowInProgressError: a run of this trigger is in flight.
        """
        trigger = self.get_trigger(organization_id, trigger_id)
        if not trigger.enabled:
            raise ValidationError("Cannot run a disabled schedule")
        self._ensure_credits(organization_id)

        run = start_content_generation(
            WorkflowEngine(self.db, self.services),
            trigger,
            IntegrationType.MANUAL,
            integration_id=trigger.id,
        )

        entry = WebhookLogEntry(
            reference_id=run.id,
            title=f"Manual trigger: {trigger.output_type}",
            integration_type=IntegrationType.MANUAL,
            status=LogStatus.SUCCESS,
            status_code=200,
            payload={
                "trigger_id": trigger.id,
                "source_type": trigger.source_type,
                "output_type": trigger.output_type,
                "workflow_run_id": run.id,
                "triggered_by": user_id,
            },
        )
        append_webhook_log(self.services, organization_id, trigger.id, entry)
        logger.info(
            "Trigger run started manually",
            extra={"organization_id": organization_id, "trigger_id": trigger.id, "run_id": run.id},
        )
        return run

    def run_scheduled(self, trigger_id: str) -> Optional[WorkflowRun]:
        """Handle a schedule callback. Returns None when nothing was started."""
        trigger = self.triggers.get_by_id_optional(trigger_id)
        if trigger is None or not trigger.enabled:
            logger.info("Scheduled run ignored for missing or disabled trigger", extra={"trigger_id": trigger_id})
            return None

        if not self.services.entitlements.has_ai_credits(trigger.organization_id):
            logger.info(
                "Scheduled run skipped: AI credits exhausted",
                extra={"organization_id": trigger.organization_id, "trigger_id": trigger.id},
            )
            return None

        try:
            return start_content_generation(
                WorkflowEngine(self.db, self.services),
                trigger,
                IntegrationType.WEBHOOK,
                integration_id=trigger.id,
            )
        except WorkflowInProgressError:
            logger.info(
                "Scheduled run skipped: previous run still in progress",
                extra={"organization_id": trigger.organization_id, "trigger_id": trigger.id},
            )
            return None
