"""
Run a PMS revenue sync (or a dry-run preview) from the command line.

Usage:
    python -m scripts.run_pms_sync                                   # preview default period
    python -m scripts.run_pms_sync --start 2025-07 --end 2025-09     # preview a range
    python -m scripts.run_pms_sync --start 2025-07 --commit          # write to the inbox
"""
import argparse
import asyncio
import json
import logging
import sys

from moneybridge.config import get_settings
from moneybridge.database import async_session_factory, dispose_engine
from moneybridge.integrations.pms import PmsNotConfiguredError, PmsUnavailableError, month_bounds
from moneybridge.services.pms_bridge import (
    PMS_SOURCE_KEY,
    current_month,
    preview_pms_revenues,
    sync_pms_revenues,
)
from moneybridge.utils.locks import LockTimeoutError, sync_lock

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def run(start_month: str, end_month: str, commit: bool) -> int:
    try:
        if not commit:
            preview = await preview_pms_revenues(start_month, end_month)
            for row in preview["summary"]:
                logger.info("%s: %s across %d branches", row["month"], row["total"], row["branches"])
            logger.info("Dry run: %d records. Re-run with --commit to sync.", preview["total_records"])
            return 0

        async with sync_lock(PMS_SOURCE_KEY):
            async with async_session_factory() as db:
                result = await sync_pms_revenues(db, start_month, end_month)
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return 1 if result["errors"] else 0
    except PmsNotConfiguredError:
        logger.error("PMS_DATABASE_URL is not set")
        return 2
    except PmsUnavailableError as e:
        logger.error("PMS database unavailable: %s", str(e))
        return 2
    except LockTimeoutError as e:
        logger.error(str(e))
        return 3
    finally:
        await dispose_engine()


def main():
    parser = argparse.ArgumentParser(description="Sync PMS monthly revenue into the income inbox")
    parser.add_argument("--start", default=None, help="Start month YYYY-MM")
    parser.add_argument("--end", default=None, help="End month YYYY-MM (default: current month)")
    parser.add_argument("--commit", action="store_true", help="Write rows instead of previewing")
    args = parser.parse_args()

    start_month = args.start or get_settings().pms_default_start_month
    end_month = args.end or current_month()
    try:
        month_bounds(start_month, end_month)
    except ValueError as e:
        parser.error(str(e))

    sys.exit(asyncio.run(run(start_month, end_month, args.commit)))


if __name__ == "__main__":
    main()
