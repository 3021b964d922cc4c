"""
Read-only access to the external PMS (property management system) database.

The PMS records daily cumulative performance entries per branch; the last
entry of a month carries that month's revenue. Every query runs on a
short-lived engine that is disposed when the reader closes.
"""
import logging
import re
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from moneybridge.config import get_settings

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


class PmsNotConfiguredError(Exception):
    """PMS_DATABASE_URL is not set."""
    pass


class PmsUnavailableError(Exception):
    """The PMS database could not be reached or queried."""
    pass


@dataclass
class PmsBranch:
    id: int
    name: str
    code: Optional[str]
    business_type: Optional[str]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PmsPerformanceEntry:
    branch_id: int
    branch_name: str
    branch_code: Optional[str]
    entry_date: date
    revenue: Optional[Decimal]


@dataclass
class PmsMonthlyRevenue:
    branch_id: int
    branch_name: str
    branch_code: Optional[str]
    month: str  # YYYY-MM
    last_entry_date: date
    revenue: Optional[Decimal]

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "branch_code": self.branch_code,
            "month": self.month,
            "last_entry_date": self.last_entry_date.isoformat(),
            "revenue": str(self.revenue) if self.revenue is not None else None,
        }


def parse_month(value: str) -> tuple[int, int]:
    """'2025-07' -> (2025, 7). Raises ValueError on bad format or month."""
    if not isinstance(value, str) or not MONTH_PATTERN.match(value):
        raise ValueError(f"Invalid month '{value}': expected YYYY-MM")
    year, month = int(value[:4]), int(value[5:])
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month '{value}': month must be 01-12")
    return year, month


def month_bounds(start_month: str, end_month: str) -> tuple[date, date]:
    """[first day of start_month, first day after end_month)."""
    start_year, start_mon = parse_month(start_month)
    end_year, end_mon = parse_month(end_month)
    if (start_year, start_mon) > (end_year, end_mon):
        raise ValueError(f"Start month {start_month} is after end month {end_month}")
    if end_mon == 12:
        upper = date(end_year + 1, 1, 1)
    else:
        upper = date(end_year, end_mon + 1, 1)
    return date(start_year, start_mon, 1), upper


def select_latest_per_month(entries: Iterable[PmsPerformanceEntry]) -> list[PmsMonthlyRevenue]:
    """
    Keep the entry with the latest date for each (branch, month).
    Output is sorted by month, then branch id.
    """
    latest: dict[tuple[int, str], PmsPerformanceEntry] = {}
    for entry in entries:
        key = (entry.branch_id, entry.entry_date.strftime("%Y-%m"))
        current = latest.get(key)
        if current is None or entry.entry_date > current.entry_date:
            latest[key] = entry

    monthly = [
        PmsMonthlyRevenue(
            branch_id=entry.branch_id,
            branch_name=entry.branch_name,
            branch_code=entry.branch_code,
            month=month,
            last_entry_date=entry.entry_date,
            revenue=entry.revenue,
        )
        for (_, month), entry in latest.items()
    ]
    monthly.sort(key=lambda r: (r.month, r.branch_id))
    return monthly


def _async_url(url: str) -> str:
    """Accept plain postgres:// URLs and route them through asyncpg."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


class PmsReader:
    """
    Async context manager over a dedicated engine:

        async with open_pms_reader() as pms:
            branches = await pms.fetch_branches()
    """

    def __init__(self, database_url: str, pool_size: int = 3):
        self.database_url = _async_url(database_url)
        self.pool_size = pool_size
        self._engine: Optional[AsyncEngine] = None

    async def __aenter__(self) -> "PmsReader":
        try:
            self._engine = create_async_engine(
                self.database_url, pool_size=self.pool_size, max_overflow=0,
            )
        except (SQLAlchemyError, ImportError) as e:
            # Malformed URL or missing driver
            logger.error("PMS engine could not be created: %s", str(e))
            raise PmsUnavailableError(str(e)) from e
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def _fetch(self, sql: str, params: Optional[dict] = None) -> list:
        if self._engine is None:
            raise RuntimeError("PmsReader used outside its context")
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                return list(result.mappings().all())
        except (SQLAlchemyError, OSError) as e:
            logger.error("PMS query failed: %s", str(e))
            raise PmsUnavailableError(str(e)) from e

    async def ping(self) -> bool:
        await self._fetch("SELECT 1")
        return True

    async def fetch_branches(self) -> list[PmsBranch]:
        rows = await self._fetch(
            """
            SELECT id, name, code, business_type
            FROM branches
            ORDER BY id
            """,
        )
        return [
            PmsBranch(
                id=row["id"],
                name=row["name"],
                code=row["code"],
                business_type=row["business_type"],
            )
            for row in rows
        ]

    async def fetch_entries(self, start_month: str, end_month: str) -> list[PmsPerformanceEntry]:
        lower, upper = month_bounds(start_month, end_month)
        rows = await self._fetch(
            """
            SELECT pe.branch_id, b.name AS branch_name, b.code AS branch_code,
                   pe.date AS entry_date, pe.current_month_revenue AS revenue
            FROM performance_entries pe
            JOIN branches b ON b.id = pe.branch_id
            WHERE pe.date >= :lower AND pe.date < :upper
            ORDER BY pe.branch_id, pe.date
            """,
            {"lower": lower, "upper": upper},
        )
        return [
            PmsPerformanceEntry(
                branch_id=row["branch_id"],
                branch_name=row["branch_name"],
                branch_code=row["branch_code"],
                entry_date=row["entry_date"],
                revenue=Decimal(str(row["revenue"])) if row["revenue"] is not None else None,
            )
            for row in rows
        ]


def open_pms_reader() -> PmsReader:
    settings = get_settings()
    if not settings.pms_database_url:
        raise PmsNotConfiguredError("PMS_DATABASE_URL is not configured")
    return PmsReader(settings.pms_database_url, pool_size=settings.pms_pool_size)


async def fetch_monthly_revenues(
    start_month: str, end_month: str,
) -> tuple[list[PmsMonthlyRevenue], list[PmsBranch]]:
    """Latest-entry-per-month revenues plus the branch list."""
    async with open_pms_reader() as pms:
        entries = await pms.fetch_entries(start_month, end_month)
        branches = await pms.fetch_branches()
    return select_latest_per_month(entries), branches


async def check_pms_connection() -> bool:
    async with open_pms_reader() as pms:
        return await pms.ping()
