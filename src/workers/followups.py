"""Follow-up worker: the entry point for scheduled follow-up runs.

Invoked by the cron route (``/workers/followups``) and by the in-process
scheduler. Like the API routes, workers delegate to followup/ and never
touch provider clients directly.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.followup.orchestrator import run_followups
from src.shared.response_models import FollowupRunResult

logger = logging.getLogger(__name__)


async def handle_followup_job(
    session: AsyncSession,
    *,
    trigger: str,
    now: datetime | None = None,
) -> FollowupRunResult:
    """Run one follow-up pass on behalf of a scheduler.

    Args:
        session: Active database session.
        trigger: What started the run ("cron" or "scheduler"), for logs.
        now: Run time.

    Returns:
        FollowupRunResult from the orchestrator.
    """
    logger.info("followup_job_started", extra={"trigger": trigger})
    result = await run_followups(session, now=now)
    if result.success:
        logger.info(
            "followup_job_completed",
            extra={"trigger": trigger, "candidates": result.candidates},
        )
    else:
        logger.error(
            "followup_job_failed",
            extra={"trigger": trigger, "error": result.error},
        )
    return result
