"""Opportunity database model."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cloudcost.core.database import Base
from cloudcost.models.scan import utcnow


class OpportunityCategory(str, Enum):
    """Kind of waste an opportunity addresses."""

    IDLE = "idle"
    UNUSED = "unused"
    UNDERUTILIZED = "underutilized"
    OVERSIZED = "oversized"
    MISCONFIGURED = "misconfigured"


class Confidence(str, Enum):
    """How sure the check is about its recommendation."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Opportunity(Base):
    """A priced cost-reduction recommendation belonging to one scan."""

    __tablename__ = "opportunities"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    scan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("scans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    opportunity_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    resource_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    resource_id: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    resource_name: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    current_cost: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
    )
    estimated_savings: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
        index=True,
    )
    confidence: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    recommendation: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    resource_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    detected_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        nullable=False,
    )

    # Relationships
    scan: Mapped["Scan"] = relationship(  # type: ignore # noqa: F821
        "Scan",
        back_populates="opportunities",
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Opportunity {self.opportunity_id} - ${self.estimated_savings:.2f}>"
