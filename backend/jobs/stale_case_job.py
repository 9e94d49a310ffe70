"""
Stale CofO application sweep.

Expires applications whose pending review has outlived REVIEW_SLA_DAYS and
tells each applicant. Runs from the in-process loop in app.main, or once
from the command line:

    python -m jobs.stale_case_job
"""
from __future__ import annotations

from typing import Optional

from app.core.config import settings
from app.core.logger import logger
from app.db.database import SessionLocal
from app.services.workflow_engine import workflow_engine


def run_stale_case_job(sla_days: Optional[int] = None) -> dict:
    sla_days = sla_days if sla_days is not None else settings.REVIEW_SLA_DAYS
    if not sla_days:
        logger.info("Stale-case sweep skipped: REVIEW_SLA_DAYS is not set")
        return {"expired": 0, "notification_warnings": 0, "sla_days": None}

    db = SessionLocal()
    try:
        outcomes = workflow_engine.expire_stale_cases(db, sla_days=sla_days)
    finally:
        db.close()

    warnings = []
    for outcome in outcomes:
        warnings.extend(workflow_engine.deliver(outcome.intents))

    summary = {
        "expired": len(outcomes),
        "notification_warnings": len(warnings),
        "sla_days": sla_days,
    }
    logger.info("Stale-case sweep completed: %s", summary)
    return summary


if __name__ == "__main__":
    run_stale_case_job()
