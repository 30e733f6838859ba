"""Durable, resumable workflow execution.

A workflow is an ordered list of named steps. Runs are persisted in
``workflow_runs`` (the cursor) and ``workflow_steps`` (the step log):

- ``start`` takes the per-organization lock, inserts a queued run, writes
  the first progress snapshot and returns. Nothing executes in the caller.
- ``execute`` is driven by the worker. It walks the steps from the
  cursor. A step whose output is already recorded is skipped, so an
  interrupted or retried run resumes where it stopped. Each step's side
  effects and its step-log record commit together before the next step
  begins.
- Errors are classified. ``FatalStepError`` fails the run immediately.
  Anything else is reported as a failed stage and re-raised to the retry
  layer in ``execute``, which re-queues the run with backoff until
  ``WORKFLOW_MAX_ATTEMPTS`` is exhausted.

Locks and progress snapshots live in the key-value store with TTLs, so a
run abandoned by a crashed process stops blocking new runs once its lock
expires.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.context import ServiceContext
from ..core.logging_config import run_id_var
from ..exceptions import NotFoundError, StoreUnavailableError, WorkflowInProgressError
from ..models.enums import RunStatus
from ..models.workflow import WorkflowRun, WorkflowStep
from .kv_store import lock_key, progress_key, to_json_safe

logger = logging.getLogger(__name__)

IDLE = "idle"
COMPLETED = "completed"
FAILED = "failed"

_ACTIVE_STATUSES = (RunStatus.QUEUED.value, RunStatus.RUNNING.value)


class FatalStepError(Exception):
    """The input can never succeed (e.g. a malformed URL). Not retried."""


class RetriableStepError(Exception):
    """A transient failure. The message is safe to show to users."""


@dataclass
class StepContext:
    """What a step sees: the run, prior step outputs, and the service context."""
    db: Session
    services: ServiceContext
    run: WorkflowRun
    outputs: Dict[str, Any]

    @property
    def organization_id(self) -> str:
        return self.run.organization_id

    @property
    def payload(self) -> dict:
        return self.run.payload or {}


@dataclass(frozen=True)
class Step:
    name: str
    stage: str
    run: Callable[[StepContext], Any]


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named sequence of steps.

    ``scoped`` workflows take their lock per correlation id (e.g. per
    trigger) instead of per organization. ``on_finished`` runs after the
    run reaches a terminal state and must not raise.
    """
    workflow_type: str
    steps: Tuple[Step, ...]
    scoped: bool = False
    on_finished: Optional[Callable[[ServiceContext, WorkflowRun], None]] = field(default=None, compare=False)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def stage_at(self, index: int) -> str:
        return self.steps[min(max(index, 0), self.total_steps - 1)].stage


_REGISTRY: Dict[str, WorkflowDefinition] = {}


def register(definition: WorkflowDefinition) -> WorkflowDefinition:
    _REGISTRY[definition.workflow_type] = definition
    return definition


def get_definition(workflow_type: str) -> WorkflowDefinition:
    from . import workflows  # noqa: F401  (registers the built-in workflows)

    definition = _REGISTRY.get(workflow_type)
    if definition is None:
        raise NotFoundError("Workflow type")
    return definition


def idle_progress(definition: WorkflowDefinition) -> dict:
    return {"status": IDLE, "currentStep": 0, "totalSteps": definition.total_steps}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    """Starts, executes and reports on workflow runs."""

    def __init__(self, db: Session, services: ServiceContext):
        self.db = db
        self.services = services
        self.settings = services.settings
        self.store = services.store

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(
        self,
        definition: WorkflowDefinition,
        organization_id: str,
        payload: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> WorkflowRun:
        """Queue a run and return it without executing anything.

        Raises:
            WorkflowInProgressError: a run holding the same lock is in flight.
        """
        run_id = str(uuid.uuid4())
        scope = correlation_id if definition.scoped else None
        key = lock_key(definition.workflow_type, organization_id, scope)

        try:
            acquired = self.store.try_acquire_lock(key, self.settings.workflow_lock_ttl_seconds, run_id)
            coordinated = True
        except StoreUnavailableError:
            # Fall back to the run table; it is slower and not atomic
            # across processes, which is acceptable only because every
            # step is an upsert.
            logger.warning(
                "Lock store unavailable, checking active runs instead",
                extra={"organization_id": organization_id, "workflow_type": definition.workflow_type},
            )
            acquired = not self._has_active_run(key)
            coordinated = False

        if not acquired:
            logger.info(
                "Workflow already in progress",
                extra={"organization_id": organization_id, "workflow_type": definition.workflow_type},
            )
            raise WorkflowInProgressError(definition.workflow_type)

        if coordinated:
            self._abandon_orphans(key)

        now = _utcnow()
        run = WorkflowRun(
            id=run_id,
            organization_id=organization_id,
            workflow_type=definition.workflow_type,
            lock_key=key,
            correlation_id=correlation_id,
            status=RunStatus.QUEUED.value,
            current_step=0,
            total_steps=definition.total_steps,
            payload=to_json_safe(payload or {}),
            attempts=0,
            created_at=now,
        )
        try:
            self.db.add(run)
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.store.release_lock(key, run_id)
            raise
        self.db.refresh(run)

        self._write_progress(run, definition, definition.stage_at(0), 1)
        logger.info(
            "Workflow run queued",
            extra={
                "run_id": run.id,
                "organization_id": organization_id,
                "workflow_type": definition.workflow_type,
                "correlation_id": correlation_id,
            },
        )
        return run

    def _has_active_run(self, key: str) -> bool:
        cutoff = _utcnow() - timedelta(seconds=self.settings.workflow_stale_after_seconds)
        return (
            self.db.query(WorkflowRun.id)
            .filter(
                WorkflowRun.lock_key == key,
                WorkflowRun.status.in_(_ACTIVE_STATUSES),
                WorkflowRun.created_at >= cutoff,
            )
            .first()
            is not None
        )

    def _abandon_orphans(self, key: str) -> None:
        """Fail runs whose lock expired without them ever finishing."""
        orphans = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.lock_key == key, WorkflowRun.status.in_(_ACTIVE_STATUSES))
            .all()
        )
        if not orphans:
            return
        for orphan in orphans:
            orphan.status = RunStatus.FAILED.value
            orphan.error_message = "Run abandoned after its lock expired"
            orphan.completed_at = _utcnow()
            logger.warning("Abandoning orphaned workflow run", extra={"run_id": orphan.id})
        self.db.commit()

    # ------------------------------------------------------------------
    # Execute (durable driver)
    # ------------------------------------------------------------------

    def execute(self, run_id: str) -> WorkflowRun:
        """Drive a run to completion, failure, or its next retry."""
        run = self.db.get(WorkflowRun, run_id)
        if run is None:
            raise NotFoundError("Workflow run")
        if RunStatus(run.status).is_terminal:
            return run

        definition = get_definition(run.workflow_type)
        token = run_id_var.set(run.id)
        try:
            run.status = RunStatus.RUNNING.value
            run.started_at = _utcnow()
            self.db.commit()

            try:
                result = self._run_steps(run, definition)
            except FatalStepError as e:
                self._finish_failed(run, definition, self._stage_message(run, definition, str(e)))
            except Exception as e:
                self._retry_or_fail(run, definition, e)
            else:
                self._finish_completed(run, definition, result)
            return run
        finally:
            run_id_var.reset(token)

    def _run_steps(self, run: WorkflowRun, definition: WorkflowDefinition) -> Any:
        outputs = self._recorded_outputs(run.id)
        result: Any = None

        for index, step in enumerate(definition.steps):
            if index in outputs:
                result = outputs[index][1]
                continue

            self._write_progress(run, definition, step.stage, index + 1)
            ctx = StepContext(
                db=self.db,
                services=self.services,
                run=run,
                outputs={name: value for name, value in outputs.values()},
            )

            try:
                output = to_json_safe(step.run(ctx))
            except FatalStepError as e:
                self.db.rollback()
                self._record_step_failure(run, index, step, str(e))
                self._write_progress(
                    run, definition, FAILED, index + 1, error=f"{step.stage} failed: {e}"
                )
                raise
            except RetriableStepError as e:
                self.db.rollback()
                self._record_step_failure(run, index, step, str(e))
                self._write_progress(
                    run, definition, FAILED, index + 1, error=f"{step.stage} failed: {e}"
                )
                raise
            except Exception as e:
                self.db.rollback()
                logger.exception(
                    "Workflow step raised",
                    extra={"step": step.name, "workflow_type": definition.workflow_type},
                )
                self._record_step_failure(run, index, step, type(e).__name__)
                self._write_progress(
                    run, definition, FAILED, index + 1,
                    error=f"Unknown error while performing '{step.stage}' step",
                )
                raise

            self._record_step_success(run, index, step, output)
            outputs[index] = (step.name, output)
            result = output

        return result

    def _recorded_outputs(self, run_id: str) -> Dict[int, Tuple[str, Any]]:
        records = (
            self.db.query(WorkflowStep)
            .filter(WorkflowStep.run_id == run_id, WorkflowStep.status == "completed")
            .all()
        )
        return {r.step_index: (r.name, r.output) for r in records}

    def _step_record(self, run_id: str, index: int, step: Step) -> WorkflowStep:
        record = (
            self.db.query(WorkflowStep)
            .filter(WorkflowStep.run_id == run_id, WorkflowStep.step_index == index)
            .first()
        )
        if record is None:
            record = WorkflowStep(
                id=str(uuid.uuid4()),
                run_id=run_id,
                step_index=index,
                name=step.name,
                status="failed",
                attempts=0,
            )
            self.db.add(record)
        return record

    def _record_step_success(self, run: WorkflowRun, index: int, step: Step, output: Any) -> None:
        """Commit the step's side effects, its output and the cursor together."""
        record = self._step_record(run.id, index, step)
        record.status = "completed"
        record.output = output
        record.error_message = None
        record.attempts = (record.attempts or 0) + 1
        run.current_step = index + 1
        self.db.commit()

    def _record_step_failure(self, run: WorkflowRun, index: int, step: Step, message: str) -> None:
        record = self._step_record(run.id, index, step)
        record.status = "failed"
        record.error_message = message[:2000]
        record.attempts = (record.attempts or 0) + 1
        self.db.commit()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _stage_message(self, run: WorkflowRun, definition: WorkflowDefinition, message: str) -> str:
        return f"{definition.stage_at(run.current_step)} failed: {message}"

    def _retry_or_fail(self, run: WorkflowRun, definition: WorkflowDefinition, error: Exception) -> None:
        stage = definition.stage_at(run.current_step)
        if isinstance(error, RetriableStepError):
            message = f"{stage} failed: {error}"
        else:
            message = f"Unknown error while performing '{stage}' step"

        run.attempts = (run.attempts or 0) + 1
        max_attempts = self.settings.workflow_max_attempts
        if run.attempts >= max_attempts:
            logger.warning(
                "Workflow run failed permanently",
                extra={"run_id": run.id, "attempts": run.attempts, "stage": stage},
            )
            self._finish_failed(run, definition, message)
            return

        delay = self.settings.workflow_retry_backoff_seconds * run.attempts
        run.status = RunStatus.QUEUED.value
        run.error_message = message
        run.next_attempt_at = _utcnow() + timedelta(seconds=delay)
        self.db.commit()

        self._write_progress(
            run, definition, stage, run.current_step + 1,
            error=f"{message}. Retrying (attempt {run.attempts + 1} of {max_attempts})",
        )
        logger.info(
            "Workflow run re-queued",
            extra={"run_id": run.id, "attempts": run.attempts, "retry_in_seconds": delay},
        )

    def _finish_failed(self, run: WorkflowRun, definition: WorkflowDefinition, message: str) -> None:
        run.status = RunStatus.FAILED.value
        run.error_message = message
        run.completed_at = _utcnow()
        run.next_attempt_at = None
        self.db.commit()
        self._write_progress(run, definition, FAILED, run.current_step + 1, error=message)
        self.store.release_lock(run.lock_key, run.id)
        logger.info("Workflow run failed", extra={"run_id": run.id, "error": message})
        self._notify_finished(run, definition)

    def _finish_completed(self, run: WorkflowRun, definition: WorkflowDefinition, result: Any) -> None:
        run.status = RunStatus.COMPLETED.value
        run.result = result
        run.error_message = None
        run.completed_at = _utcnow()
        run.next_attempt_at = None
        self.db.commit()
        self._write_progress(run, definition, COMPLETED, definition.total_steps)
        self.store.release_lock(run.lock_key, run.id)
        logger.info("Workflow run completed", extra={"run_id": run.id})
        self._notify_finished(run, definition)

    def _notify_finished(self, run: WorkflowRun, definition: WorkflowDefinition) -> None:
        if definition.on_finished is None:
            return
        try:
            definition.on_finished(self.services, run)
        except Exception:
            logger.exception("Workflow completion hook failed", extra={"run_id": run.id})

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _progress_key(self, run: WorkflowRun, definition: WorkflowDefinition) -> str:
        scope = run.correlation_id if definition.scoped else None
        return progress_key(definition.workflow_type, run.organization_id, scope)

    def _write_progress(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        status: str,
        current_step: int,
        error: Optional[str] = None,
    ) -> None:
        record = {
            "status": status,
            "currentStep": min(current_step, definition.total_steps),
            "totalSteps": definition.total_steps,
            "runId": run.id,
        }
        if error:
            record["error"] = error
        ttl = self.settings.workflow_progress_ttl_seconds
        self.store.set_progress(self._progress_key(run, definition), record, ttl)
        if status not in (COMPLETED, FAILED):
            self.store.extend_lock(run.lock_key, run.id, self.settings.workflow_lock_ttl_seconds)

    def get_progress(
        self, definition: WorkflowDefinition, organization_id: str, scope: Optional[str] = None
    ) -> dict:
        """Latest snapshot, or ``idle`` when no run started or it expired."""
        key = progress_key(definition.workflow_type, organization_id, scope if definition.scoped else None)
        try:
            record = self.store.get_progress(key)
        except StoreUnavailableError:
            record = self._progress_from_runs(definition, organization_id, scope)
        return record or idle_progress(definition)

    def _progress_from_runs(
        self, definition: WorkflowDefinition, organization_id: str, scope: Optional[str]
    ) -> Optional[dict]:
        query = self.db.query(WorkflowRun).filter(
            WorkflowRun.organization_id == organization_id,
            WorkflowRun.workflow_type == definition.workflow_type,
        )
        if definition.scoped and scope:
            query = query.filter(WorkflowRun.correlation_id == scope)
        run = query.order_by(WorkflowRun.created_at.desc()).first()
        if run is None:
            return None

        total = definition.total_steps
        if run.status == RunStatus.COMPLETED.value:
            record = {"status": COMPLETED, "currentStep": total, "totalSteps": total}
        elif run.status == RunStatus.FAILED.value:
            record = {
                "status": FAILED,
                "currentStep": min(run.current_step + 1, total),
                "totalSteps": total,
                "error": run.error_message,
            }
        else:
            record = {
                "status": definition.stage_at(run.current_step),
                "currentStep": min(run.current_step + 1, total),
                "totalSteps": total,
            }
        record["runId"] = run.id
        return record

    # ------------------------------------------------------------------
    # Worker queue
    # ------------------------------------------------------------------

    def claim_next(self) -> Optional[WorkflowRun]:
        """Atomically claim the oldest due queued run, or return None."""
        now = _utcnow()
        candidates = (
            self.db.query(WorkflowRun.id)
            .filter(
                WorkflowRun.status == RunStatus.QUEUED.value,
                or_(WorkflowRun.next_attempt_at.is_(None), WorkflowRun.next_attempt_at <= now),
            )
            .order_by(WorkflowRun.created_at.asc())
            .limit(10)
            .all()
        )
        for (candidate_id,) in candidates:
            claimed = (
                self.db.query(WorkflowRun)
                .filter(WorkflowRun.id == candidate_id, WorkflowRun.status == RunStatus.QUEUED.value)
                .update(
                    {WorkflowRun.status: RunStatus.RUNNING.value, WorkflowRun.started_at: now},
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if claimed:
                logger.info("Claimed workflow run %s", candidate_id)
                return self.db.get(WorkflowRun, candidate_id)
        return None

    def recover_stale(self, stale_after_seconds: Optional[int] = None) -> int:
        """Re-queue runs stuck in ``running`` (their worker died)."""
        seconds = stale_after_seconds or self.settings.workflow_stale_after_seconds
        cutoff = _utcnow() - timedelta(seconds=seconds)
        count = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.status == RunStatus.RUNNING.value, WorkflowRun.started_at < cutoff)
            .update({WorkflowRun.status: RunStatus.QUEUED.value}, synchronize_session=False)
        )
        self.db.commit()
        if count:
            logger.warning("Re-queued %d stale workflow run(s)", count)
        return count

    def get_run(self, organization_id: str, run_id: str) -> WorkflowRun:
        run = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.id == run_id, WorkflowRun.organization_id == organization_id)
            .first()
        )
        if run is None:
            raise NotFoundError("Workflow run")
        return run
