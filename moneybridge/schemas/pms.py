"""
PMS bridge request/response schemas. Amounts are decimal strings.
"""
from typing import Optional
from pydantic import Field

from moneybridge.schemas.income import ApiModel

MONTH_REGEX = r"^\d{4}-\d{2}$"


class PmsSyncRequest(ApiModel):
    start_month: Optional[str] = Field(default=None, pattern=MONTH_REGEX)
    end_month: Optional[str] = Field(default=None, pattern=MONTH_REGEX)


class PmsPeriod(ApiModel):
    start_month: str
    end_month: str


class PmsSyncDetail(ApiModel):
    month: str
    branch: str
    amount: str
    action: str


class PmsSyncResponse(ApiModel):
    success: bool = True
    message: str
    synced: int
    updated: int
    skipped: int
    errors: int
    period: PmsPeriod
    source_id: int
    details: list[PmsSyncDetail] = Field(default_factory=list)


class PmsMonthSummary(ApiModel):
    month: str
    total: str
    branches: int


class PmsBranchResponse(ApiModel):
    id: int
    name: str
    code: Optional[str] = None
    business_type: Optional[str] = None


class PmsRevenueRecord(ApiModel):
    branch_id: int
    branch_name: str
    branch_code: Optional[str] = None
    month: str
    last_entry_date: str
    revenue: Optional[str] = None


class PmsPreviewResponse(ApiModel):
    start_month: str
    end_month: str
    summary: list[PmsMonthSummary]
    branches: list[PmsBranchResponse]
    records: list[PmsRevenueRecord]
    total_records: int


class PmsStatusResponse(ApiModel):
    configured: bool
    connected: bool
    source_id: Optional[int] = None
    total_received: int = 0
    last_received_at: Optional[str] = None
    pending_count: int = 0
    message: str


class PmsBranchDetail(ApiModel):
    branch_id: int
    branch_name: str
    branch_code: Optional[str] = None
    revenue: Optional[str] = None
    last_date: str


class PmsMonthTotals(ApiModel):
    total: str
    branches: int
    branch_detail: list[PmsBranchDetail]


class LedgerMonthTotals(ApiModel):
    total: str
    records: int


class PmsCompareRow(ApiModel):
    month: str
    pms: PmsMonthTotals
    ledger: LedgerMonthTotals
    diff: str
    diff_pct: Optional[float] = None
    status: str  # insufficient_ledger, match, pms_higher, ledger_higher


class PmsCompareResponse(ApiModel):
    start_month: str
    end_month: str
    comparison: list[PmsCompareRow]
