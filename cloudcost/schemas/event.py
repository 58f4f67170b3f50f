"""Scan lifecycle event schema."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from cloudcost.models.scan import utcnow


class ScanEventType(str, Enum):
    """Lifecycle transitions observers are told about."""

    STARTED = "scan_started"
    COMPLETED = "scan_completed"
    FAILED = "scan_failed"


class ScanEvent(BaseModel):
    """Tagged lifecycle event."""

    type: ScanEventType
    scan_id: int
    provider: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def started(cls, scan_id: int, provider: str, region: str | None = None) -> "ScanEvent":
        return cls(
            type=ScanEventType.STARTED,
            scan_id=scan_id,
            provider=provider,
            data={"region": region},
        )

    @classmethod
    def completed(
        cls, scan_id: int, provider: str, total_savings: float, opportunity_count: int
    ) -> "ScanEvent":
        return cls(
            type=ScanEventType.COMPLETED,
            scan_id=scan_id,
            provider=provider,
            data={"total_savings": total_savings, "opportunity_count": opportunity_count},
        )

    @classmethod
    def failed(cls, scan_id: int, provider: str | None, error: str) -> "ScanEvent":
        return cls(
            type=ScanEventType.FAILED,
            scan_id=scan_id,
            provider=provider,
            data={"error": error},
        )
