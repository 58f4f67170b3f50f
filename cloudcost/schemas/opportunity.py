"""Opportunity Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cloudcost.models.opportunity import Confidence, OpportunityCategory
from cloudcost.models.scan import CloudProvider, utcnow


class SavingsOpportunity(BaseModel):
    """Opportunity as emitted by a check unit, before it is attached to a scan."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Check-specific identifier, e.g. ebs-unattached-vol-123")
    provider: CloudProvider
    resource_type: str
    resource_id: str
    resource_name: str | None = None
    category: OpportunityCategory
    current_cost: float = Field(ge=0, description="Current monthly cost")
    estimated_savings: float = Field(ge=0, description="Estimated monthly savings")
    confidence: Confidence
    recommendation: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime = Field(default_factory=utcnow)
