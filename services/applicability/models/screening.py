"""
Screening Result Models
=======================

Pydantic models for screening results and aggregated law sets.

Results are frozen so a cached result handed to several callers cannot be
changed by any of them, and serialisable so they can live in Redis and
travel over HTTP unchanged.

Version: 0.1.0
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.models.regulation import LawRecord


class ComplexityTier(str, Enum):
    """Screening complexity tiers, lowest first."""

    BASIC = "basic"
    ENHANCED = "enhanced"
    COMPREHENSIVE = "comprehensive"

    @property
    def rank(self) -> int:
        """Position of the tier, 0 for BASIC."""
        return TIER_ORDER.index(self)

    def next_tier(self) -> "ComplexityTier | None":
        """The tier above this one, if any."""
        if self.rank + 1 < len(TIER_ORDER):
            return TIER_ORDER[self.rank + 1]
        return None

    def at_or_below(self) -> list["ComplexityTier"]:
        """This tier and every lower tier, highest first."""
        return list(reversed(TIER_ORDER[: self.rank + 1]))


TIER_ORDER: tuple[ComplexityTier, ...] = (
    ComplexityTier.BASIC,
    ComplexityTier.ENHANCED,
    ComplexityTier.COMPREHENSIVE,
)


class ConfidenceLevel(str, Enum):
    """Confidence in a screening result. NONE marks a degraded result."""

    NONE = "none"
    BASIC = "basic"
    ENHANCED = "enhanced"
    HIGH = "high"


TIER_CONFIDENCE: dict[ComplexityTier, ConfidenceLevel] = {
    ComplexityTier.BASIC: ConfidenceLevel.BASIC,
    ComplexityTier.ENHANCED: ConfidenceLevel.ENHANCED,
    ComplexityTier.COMPREHENSIVE: ConfidenceLevel.HIGH,
}

DUTY_FILTER_TAG = "Making laws only (duty-creating)"
DEGRADED_METHOD = "degraded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskAssessment(BaseModel):
    """Comprehensive-tier risk summary."""

    model_config = ConfigDict(frozen=True)

    risk_level: str = "medium"
    applicable_regulation_count: int = 0
    priority_areas: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)


class ScreeningResult(BaseModel):
    """Outcome of screening one organization at one tier."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    tier: ComplexityTier
    applicable_law_count: int = Field(default=0, ge=0)
    sample_regulations: list[LawRecord] = Field(default_factory=list)
    screening_method: str
    organization_profile: dict[str, Any] = Field(default_factory=dict)
    confidence_level: ConfidenceLevel
    generated_at: datetime = Field(default_factory=_utcnow)

    # Degraded results mean "screening unavailable", not "nothing applies"
    degraded: bool = False
    degraded_reason: str | None = None

    filters_applied: list[str] = Field(default_factory=list)
    risk_assessment: RiskAssessment | None = None
    priority_areas: list[str] = Field(default_factory=list)
    duty_filter: str = DUTY_FILTER_TAG

    @classmethod
    def degraded_for(
        cls,
        organization_id: str,
        tier: ComplexityTier,
        reason: str,
        organization_profile: dict[str, Any] | None = None,
    ) -> "ScreeningResult":
        """Empty result tagged as degraded."""
        return cls(
            organization_id=organization_id,
            tier=tier,
            applicable_law_count=0,
            sample_regulations=[],
            screening_method=DEGRADED_METHOD,
            organization_profile=organization_profile or {},
            confidence_level=ConfidenceLevel.NONE,
            degraded=True,
            degraded_reason=reason,
        )

    @property
    def law_ids(self) -> list[str]:
        return [r.id for r in self.sample_regulations]


class AggregationMode(str, Enum):
    """How an aggregated law set was produced."""

    NO_LOCATIONS = "no_locations"
    SINGLE_LOCATION = "single_location"
    MULTI_LOCATION = "multi_location"


class AggregatedLawSet(BaseModel):
    """Deduplicated applicable laws across an organization's active locations."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    mode: AggregationMode
    law_ids: list[str] = Field(default_factory=list)
    count: int = Field(default=0, ge=0)
    location_counts: dict[str, int] = Field(default_factory=dict)
    organization_wide_ids: list[str] = Field(default_factory=list)
    screening_result: ScreeningResult | None = None
    degraded: bool = False
