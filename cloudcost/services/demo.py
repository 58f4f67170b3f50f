"""Canned opportunities returned when DEMO_MODE is enabled."""

from cloudcost.models.opportunity import Confidence, OpportunityCategory
from cloudcost.models.scan import CloudProvider
from cloudcost.schemas.opportunity import SavingsOpportunity


def demo_opportunities(provider: str) -> list[SavingsOpportunity]:
    """Three fixed opportunities tagged with the requested provider."""
    tag = CloudProvider(provider)
    return [
        SavingsOpportunity(
            id="mock-1",
            provider=tag,
            resource_type="ec2-instance",
            resource_id="i-1234567890abcdef0",
            resource_name="demo-server",
            category=OpportunityCategory.UNDERUTILIZED,
            current_cost=73.00,
            estimated_savings=58.40,
            confidence=Confidence.HIGH,
            recommendation="Instance running at 5% CPU - consider downsizing from t3.large to t3.small",
            metadata={"current_type": "t3.large", "recommended_type": "t3.small", "region": "us-east-1"},
        ),
        SavingsOpportunity(
            id="mock-2",
            provider=tag,
            resource_type="ebs-volume",
            resource_id="vol-0abcd1234efgh5678",
            resource_name="unused-volume",
            category=OpportunityCategory.UNUSED,
            current_cost=20.00,
            estimated_savings=20.00,
            confidence=Confidence.HIGH,
            recommendation="Unattached EBS volume - delete if no longer needed",
            metadata={"size_gb": 200, "volume_type": "gp3", "region": "us-east-1"},
        ),
        SavingsOpportunity(
            id="mock-3",
            provider=tag,
            resource_type="s3-bucket",
            resource_id="old-backup-bucket-2023",
            category=OpportunityCategory.UNUSED,
            current_cost=45.00,
            estimated_savings=33.75,
            confidence=Confidence.MEDIUM,
            recommendation="Move 90% of objects to S3 Glacier for long-term storage",
            metadata={"storage_class": "STANDARD", "objects": 15000, "region": "us-west-2"},
        ),
    ]
