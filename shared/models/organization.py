"""
Organization Models
===================

Organization profiles and their operational locations, as consumed by
the applicability screening engine.

Profiles are immutable snapshots. Values that cannot be coerced to a
field's type are dropped rather than rejected, so a partially broken
profile still screens with whatever it does carry.

Version: 0.1.0
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)


class LocationType(str, Enum):
    """Kinds of operational location."""

    HEADQUARTERS = "headquarters"
    BRANCH_OFFICE = "branch_office"
    WAREHOUSE = "warehouse"
    MANUFACTURING_SITE = "manufacturing_site"
    RETAIL_OUTLET = "retail_outlet"
    PROJECT_SITE = "project_site"
    TEMPORARY_LOCATION = "temporary_location"
    HOME_OFFICE = "home_office"
    OTHER = "other"


class OperationalStatus(str, Enum):
    """Operational status of a location."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SEASONAL = "seasonal"
    UNDER_CONSTRUCTION = "under_construction"
    CLOSING = "closing"


class OrganizationProfile(BaseModel):
    """Known attributes of an organization. Every field is optional."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Basic identification
    organization_name: str | None = None
    organization_type: str | None = None
    headquarters_region: str | None = None
    industry_sector: str | None = None

    # Operational detail
    total_employees: int | None = None
    annual_turnover: float | None = None
    operational_regions: list[str] | None = None
    business_activities: list[str] | None = None
    primary_sic_code: str | None = None

    # Compliance context and risk
    compliance_requirements: list[str] | None = None
    registration_number: str | None = None
    risk_profile: str | None = None
    special_circumstances: str | None = Field(
        default=None,
        description="Free-text notes; carried as context, never used as a filter",
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def drop_malformed(
        cls,
        value: Any,
        handler: ValidatorFunctionWrapHandler,
        info: ValidationInfo,
    ) -> Any:
        """Treat values of the wrong type as absent."""
        try:
            return handler(value)
        except ValidationError:
            return None

    @classmethod
    def from_raw(cls, raw: Any) -> "OrganizationProfile":
        """
        Build a profile from an untyped mapping.

        Unknown keys are ignored; anything that is not a mapping yields
        an empty profile.
        """
        if not isinstance(raw, Mapping):
            return cls()
        known = {str(k): v for k, v in raw.items() if str(k) in cls.model_fields}
        return cls(**known)


class Location(BaseModel):
    """A place of operation belonging to exactly one organization."""

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    location_name: str = Field(..., min_length=1)
    location_type: LocationType = LocationType.BRANCH_OFFICE

    geographic_region: str
    employee_count: int | None = Field(default=None, ge=0)
    annual_revenue: float | None = Field(default=None, ge=0)
    industry_activities: list[str] = Field(default_factory=list)
    operational_status: OperationalStatus = OperationalStatus.ACTIVE

    is_primary_location: bool = False

    @property
    def is_active(self) -> bool:
        """Only active locations take part in screening."""
        return self.operational_status == OperationalStatus.ACTIVE


class Organization(BaseModel):
    """An organization with its current profile snapshot and locations."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    profile: OrganizationProfile = Field(default_factory=OrganizationProfile)
    locations: list[Location] = Field(default_factory=list)

    @field_validator("profile", mode="before")
    @classmethod
    def coerce_profile(cls, v: Any) -> Any:
        """Accept raw mappings (or nothing) as a profile."""
        if isinstance(v, OrganizationProfile):
            return v
        return OrganizationProfile.from_raw(v)

    @model_validator(mode="after")
    def single_primary_location(self) -> "Organization":
        """At most one location may be flagged primary."""
        primaries = [loc.id for loc in self.locations if loc.is_primary_location]
        if len(primaries) > 1:
            raise ValueError(f"Only one primary location allowed, got {len(primaries)}")
        return self

    def active_locations(self) -> list[Location]:
        """Locations currently in operation."""
        return [loc for loc in self.locations if loc.is_active]

    def primary_location(self) -> Location | None:
        """The location flagged primary, if any."""
        for loc in self.locations:
            if loc.is_primary_location:
                return loc
        return None
