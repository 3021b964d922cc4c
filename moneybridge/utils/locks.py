"""
Named Redis locks for sync jobs.

The PMS sync can be started from the admin API, the CLI script and the
background worker; all three take the same lock so only one run writes at a
time. SET NX with a TTL means a crashed holder cannot wedge the lock forever.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 600
LOCK_WAIT_SECONDS = 0
LOCK_POLL_INTERVAL = 0.1

# Delete only if the stored token is still ours
RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LockTimeoutError(Exception):
    """Another holder kept the lock for longer than the caller would wait."""
    pass


def lock_key(name: str) -> str:
    return f"moneybridge:lock:sync:{name}"


@asynccontextmanager
async def sync_lock(name: str, ttl: int = LOCK_TTL_SECONDS, wait: float = LOCK_WAIT_SECONDS):
    """
    Hold the sync lock for `name` for the duration of the block.

        async with sync_lock("pms-bridge"):
            await sync_pms_revenues(db, start, end)

    Raises LockTimeoutError if the lock is still held after `wait` seconds.
    If Redis itself is unreachable the block runs unlocked.
    """
    key = lock_key(name)
    token = uuid.uuid4().hex

    if not await _acquire(key, token, ttl, wait):
        raise LockTimeoutError(f"Sync '{name}' is already running")
    try:
        yield
    finally:
        await _release(key, token)


async def _acquire(key: str, token: str, ttl: int, wait: float) -> bool:
    try:
        from moneybridge.utils.redis_client import get_redis
        redis = await get_redis()

        waited = 0.0
        while True:
            if await redis.set(key, token, nx=True, ex=ttl):
                return True
            if waited >= wait:
                logger.warning("Lock %s is held; gave up after %.1fs", key, waited)
                return False
            await asyncio.sleep(LOCK_POLL_INTERVAL)
            waited += LOCK_POLL_INTERVAL
    except Exception as e:
        logger.warning("Redis unavailable for lock %s (%s); running without it", key, str(e))
        return True


async def _release(key: str, token: str) -> None:
    try:
        from moneybridge.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.eval(RELEASE_SCRIPT, 1, key, token)
    except Exception as e:
        logger.warning("Could not release lock %s: %s", key, str(e))
