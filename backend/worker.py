"""
Polling worker for executing workflow runs.

Checks the workflow_runs table every WORKER_POLL_INTERVAL seconds for
queued runs whose retry time has come, claims one at a time and drives it
through the workflow engine. A run that fails retriably is re-queued by the
engine with backoff; this loop only claims and executes.

Every STALE_CHECK_INTERVAL seconds, runs stuck in 'running' longer than
WORKFLOW_STALE_AFTER_SECONDS (their worker died mid-step) are put back on
the queue. Completed steps are never repeated, so a recovered run resumes
at the step that was interrupted.

Usage:
    python worker.py
"""

import logging
import os
import sys
import time

# Add package to path
sys.path.insert(0, os.path.dirname(__file__))

from shipnotes.core.config import settings
from shipnotes.core.context import ServiceContext, build_services
from shipnotes.core.logging_config import setup_logging
from shipnotes.database import SessionLocal, init_db
from shipnotes.services.workflow_engine import WorkflowEngine

# Seconds between sweeps for stale runs
STALE_CHECK_INTERVAL = int(os.getenv("STALE_CHECK_INTERVAL", "60"))

setup_logging(log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger("worker")


def process_run(services: ServiceContext, run_id: str) -> None:
    """Execute one claimed run in its own session."""
    db = SessionLocal()
    try:
        run = WorkflowEngine(db, services).execute(run_id)
        logger.info(
            "Run %s finished this attempt with status %s", run.id, run.status,
            extra={"workflow_type": run.workflow_type, "organization_id": run.organization_id},
        )
    except Exception:
        db.rollback()
        logger.exception("Run %s raised outside the engine", run_id)
    finally:
        db.close()


def recover_stale_runs(services: ServiceContext) -> int:
    db = SessionLocal()
    try:
        return WorkflowEngine(db, services).recover_stale()
    except Exception as e:
        db.rollback()
        logger.error(f"Stale run recovery failed: {e}")
        return 0
    finally:
        db.close()


def main() -> None:
    """Claim queued runs and execute them sequentially."""
    services = build_services(settings)
    init_db()

    poll_interval = settings.worker_poll_interval
    logger.info(f"Worker started, polling every {poll_interval}s")
    logger.info(f"Stale run check interval: {STALE_CHECK_INTERVAL}s")

    last_stale_check = 0.0

    while True:
        db = SessionLocal()
        try:
            now = time.monotonic()
            if now - last_stale_check >= STALE_CHECK_INTERVAL:
                recover_stale_runs(services)
                last_stale_check = now

            run = WorkflowEngine(db, services).claim_next()
            run_id = run.id if run else None
            db.close()

            if run_id:
                process_run(services, run_id)
            else:
                time.sleep(poll_interval)

        except KeyboardInterrupt:
            logger.info("Worker shutting down")
            db.close()
            break
        except Exception as e:
            logger.error(f"Worker error: {e}")
            db.close()
            time.sleep(poll_interval)


if __name__ == "__main__":
    main()
