"""
Shared Models
=============

Pydantic models shared across services.

Models:
- Organization models (Organization, OrganizationProfile, Location)
- Regulation models (LawRecord)
- Common response models (ErrorResponse, HealthResponse)
"""

from shared.models.common import (
    ErrorResponse,
    HealthResponse,
)
from shared.models.organization import (
    Location,
    LocationType,
    OperationalStatus,
    Organization,
    OrganizationProfile,
)
from shared.models.regulation import (
    DUTY_CREATING_FUNCTION,
    IN_FORCE_STATUS,
    LawRecord,
)

__all__ = [
    # Organization
    "Organization",
    "OrganizationProfile",
    "Location",
    "LocationType",
    "OperationalStatus",
    # Regulation
    "LawRecord",
    "DUTY_CREATING_FUNCTION",
    "IN_FORCE_STATUS",
    # Common
    "ErrorResponse",
    "HealthResponse",
]
