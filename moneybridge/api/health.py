"""
Liveness and readiness probes.

- GET /health       - process is up
- GET /health/ready - ledger database and Redis reachable; PMS bridge state reported
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.config import get_settings
from moneybridge.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_database(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def _check_redis() -> tuple[bool, Optional[str]]:
    """(reachable, last PMS worker heartbeat or None)."""
    try:
        from moneybridge.utils.redis_client import get_redis
        from moneybridge.workers.pms_sync import HEARTBEAT_KEY
        redis = await get_redis()
        await redis.ping()
        heartbeat = await redis.get(HEARTBEAT_KEY) if get_settings().pms_sync_enabled else None
        return True, heartbeat
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return False, None


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": _now_iso(), "version": APP_VERSION}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Ready when the ledger database and Redis answer. The PMS bridge is
    optional, so its configuration and worker heartbeat are reported but
    never make the app unready.
    """
    settings = get_settings()
    redis_ok, heartbeat = await _check_redis()
    checks = {"database": await _check_database(db), "redis": redis_ok}

    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "pms_bridge": {
            "configured": bool(settings.pms_database_url),
            "sync_enabled": settings.pms_sync_enabled,
            "last_heartbeat": heartbeat,
        },
        "timestamp": _now_iso(),
    }
