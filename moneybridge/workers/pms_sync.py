"""
PMS sync worker - periodically pulls PMS monthly revenue into the income inbox.

Each cycle syncs the previous and the current month so late month-end
revisions still land. The same Redis lock as the manual sync endpoint keeps
runs from overlapping across processes.
Heartbeat stored in Redis for health monitoring.
"""
import asyncio
import logging
from datetime import datetime, timezone

from moneybridge.config import get_settings
from moneybridge.database import async_session_factory
from moneybridge.integrations.pms import PmsNotConfiguredError, PmsUnavailableError
from moneybridge.services.pms_bridge import PMS_SOURCE_KEY, sync_pms_revenues
from moneybridge.utils.locks import LockTimeoutError, sync_lock

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "moneybridge:worker_health:pms_sync"


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from moneybridge.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(
            HEARTBEAT_KEY,
            datetime.now(timezone.utc).isoformat(),
            ex=get_settings().pms_sync_interval_seconds * 2,
        )
    except Exception as e:
        logger.debug("PMS sync heartbeat failed: %s", str(e))


def sync_window(now: datetime) -> tuple[str, str]:
    """(previous month, current month) as YYYY-MM."""
    if now.month == 1:
        previous = f"{now.year - 1}-12"
    else:
        previous = f"{now.year}-{now.month - 1:02d}"
    return previous, now.strftime("%Y-%m")


async def run_scheduled_sync() -> dict | None:
    """One sync cycle. Returns the sync result, or None if the cycle was skipped."""
    start_month, end_month = sync_window(datetime.now(timezone.utc))
    try:
        async with sync_lock(PMS_SOURCE_KEY):
            async with async_session_factory() as db:
                return await sync_pms_revenues(db, start_month, end_month)
    except LockTimeoutError:
        logger.info("PMS sync already running elsewhere; skipping cycle")
    except PmsNotConfiguredError:
        logger.warning("PMS sync worker running without PMS_DATABASE_URL; skipping cycle")
    except PmsUnavailableError as e:
        logger.error("PMS database unavailable: %s", str(e))
    return None


async def run_pms_sync_worker():
    """Main loop - sync on a fixed interval."""
    interval = get_settings().pms_sync_interval_seconds
    logger.info("PMS sync worker started (every %ds)", interval)

    while True:
        try:
            await run_scheduled_sync()
        except Exception as e:
            logger.error("PMS sync worker error: %s", str(e))

        await _heartbeat()
        await asyncio.sleep(interval)
