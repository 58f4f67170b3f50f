"""SQLAlchemy database models."""

from cloudcost.models.scan import Scan
from cloudcost.models.opportunity import Opportunity
from cloudcost.models.credential import Credential

__all__ = [
    "Scan",
    "Opportunity",
    "Credential",
]
