"""HTTP routes for scheduled worker triggers.

An external cron (Vercel cron, Cloud Scheduler, crontab + curl) calls
these endpoints with ``Authorization: Bearer <CRON_SECRET>``. Each
route delegates to the matching worker handler.

Architecture note: lives in api/ because it's an HTTP entry point.
Imports from workers/ which imports from followup/.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import verify_cron_secret
from src.db.session import get_async_session
from src.workers.followups import handle_followup_job

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/workers",
    tags=["workers"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route("/followups", methods=["GET", "POST"], response_model=None)
async def worker_followups(
    session: AsyncSession = Depends(get_async_session),
) -> dict[str, Any] | JSONResponse:
    """Handle the cron follow-up trigger.

    Args:
        session: Injected database session.

    Returns:
        ``{success, message}`` on success; 500 with ``{success, error}``
        when the run fails.
    """
    logger.info("worker_followups_received")
    result = await handle_followup_job(session, trigger="cron")
    if not result.success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": result.error or "Failed to process follow-ups"},
        )
    return result.model_dump(exclude_none=True)
