"""Scan Pydantic schemas."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cloudcost.schemas.opportunity import SavingsOpportunity


class Scan(BaseModel):
    """Schema for scan response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: str
    region: str | None
    status: str
    started_at: datetime
    completed_at: datetime | None
    total_savings: float
    opportunity_count: int
    error_message: str | None
    celery_task_id: str | None = None


class ScanStats(BaseModel):
    """Dashboard summary statistics."""

    total_scans: int
    total_savings: float = Field(description="Sum over the latest completed scan of each provider")
    recent_scans: list[Scan]


class TrendPoint(BaseModel):
    """One day of the savings trend."""

    day: date
    total_savings: float
    scan_count: int


class CheckFailureKind(str, Enum):
    """How a check failure was classified."""

    PERMISSION_DENIED = "permission_denied"
    TRANSIENT = "transient"
    FATAL = "fatal"


class CheckFailureRecord(BaseModel):
    """A check that contributed nothing because it failed."""

    check: str
    kind: CheckFailureKind
    message: str
    missing_capability: str | None = None


class ScanResult(BaseModel):
    """Aggregated orchestrator output for one scan."""

    scan_id: int
    provider: str
    region: str | None = None
    total_savings: float
    opportunities: list[SavingsOpportunity]
    check_failures: list[CheckFailureRecord] = []

    @property
    def opportunity_count(self) -> int:
        return len(self.opportunities)
