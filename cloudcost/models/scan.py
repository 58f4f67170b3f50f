"""Scan database model."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cloudcost.core.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScanStatus(str, Enum):
    """Scan status enumeration."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CloudProvider(str, Enum):
    """Supported cloud providers."""

    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"


class Scan(Base):
    """One invocation of the scan orchestrator."""

    __tablename__ = "scans"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    provider: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    region: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=ScanStatus.RUNNING.value,
        nullable=False,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    total_savings: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
    )
    opportunity_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    celery_task_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Relationships
    opportunities: Mapped[list["Opportunity"]] = relationship(  # type: ignore # noqa: F821
        "Opportunity",
        back_populates="scan",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Scan {self.id} - {self.provider} - {self.status}>"
