"""Report and report cache schemas."""

from pydantic import BaseModel

from cloudcost.schemas.opportunity import SavingsOpportunity
from cloudcost.schemas.scan import CheckFailureRecord, Scan


class ScanReport(BaseModel):
    """Denormalized snapshot of a completed scan."""

    scan: Scan
    total_savings: float
    opportunities: list[SavingsOpportunity]
    check_failures: list[CheckFailureRecord] = []


class ReportCacheEntry(BaseModel):
    """Contents of one report cache file."""

    timestamp: int  # epoch milliseconds
    provider: str
    region: str | None = None
    report: ScanReport
