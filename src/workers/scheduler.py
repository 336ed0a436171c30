"""In-process daily follow-up scheduler.

A background asyncio task, started from the app lifespan, that wakes
every ``followup_poll_interval_seconds`` and runs the follow-up job at
most once per clinic calendar day, inside the clinic call window.
Deployments that trigger ``/workers/followups`` from an external cron
leave it disabled.
"""

import asyncio
import contextlib
import logging
from datetime import UTC, date, datetime

from src.config.settings import Settings, get_settings
from src.db.session import session_scope
from src.db.settings_store import load_clinic_settings
from src.shared.errors import ConfigurationError
from src.workers.followups import handle_followup_job

logger = logging.getLogger(__name__)

_scheduler_task: asyncio.Task | None = None
_last_run_date: date | None = None


async def start_followup_scheduler() -> None:
    """Start the background follow-up scheduler loop."""
    global _scheduler_task  # noqa: PLW0603
    _scheduler_task = asyncio.create_task(_scheduler_loop(get_settings()))
    logger.info("followup_scheduler_started")


async def stop_followup_scheduler() -> None:
    """Stop the scheduler and wait for the loop to exit."""
    global _scheduler_task  # noqa: PLW0603
    if _scheduler_task is not None:
        _scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _scheduler_task
        _scheduler_task = None
    logger.info("followup_scheduler_stopped")


def reset_scheduler_state() -> None:
    """Forget the last run date.

    Used by tests to reset state between runs.
    """
    global _last_run_date  # noqa: PLW0603
    _last_run_date = None


async def _scheduler_loop(app_settings: Settings) -> None:
    """Tick forever, sleeping between polls."""
    while True:
        try:
            await run_scheduled_tick(app_settings)
        except Exception:
            logger.exception("followup_scheduler_tick_failed")
        await asyncio.sleep(app_settings.followup_poll_interval_seconds)


async def run_scheduled_tick(
    app_settings: Settings,
    now: datetime | None = None,
) -> bool:
    """Run the follow-up job if today's run is due.

    Args:
        app_settings: Process settings (timezone, poll interval).
        now: Current time.

    Returns:
        True if a run was started on this tick.
    """
    global _last_run_date  # noqa: PLW0603
    now = now or datetime.now(UTC)
    local_now = now.astimezone(app_settings.clinic_tz)
    if _last_run_date == local_now.date():
        return False

    async with session_scope() as session:
        try:
            clinic_settings = await load_clinic_settings(session)
        except ConfigurationError as exc:
            logger.warning("followup_scheduler_no_settings", extra={"error": str(exc)})
            return False
        if not clinic_settings.within_call_window(local_now.time()):
            return False

        _last_run_date = local_now.date()
        await handle_followup_job(session, trigger="scheduler", now=now)
    return True
