"""
Screening Routes
================

API endpoints for applicability screening, profile analysis, location
aggregation and change notifications.

Every endpoint takes the organization snapshot in the request body; the
engine never reads or writes organization records itself.

Version: 0.1.0
"""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models.organization import Organization
from shared.models.regulation import LawRecord

from services.applicability.dependencies import get_aggregator, get_matcher, get_streamer
from services.applicability.models.screening import AggregatedLawSet, ScreeningResult
from services.applicability.services.locations import LocationAggregator
from services.applicability.services.matcher import ApplicabilityMatcher
from services.applicability.services.streamer import ResultStreamer


logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================


class ScreenRequest(BaseModel):
    """Request to screen an organization."""

    organization: Organization
    timeout: float | None = Field(
        None,
        gt=0,
        description="Seconds before falling back to a cached lower tier",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "organization": {
                        "id": "org-123",
                        "profile": {
                            "organization_name": "Acme Build Ltd",
                            "organization_type": "limited_company",
                            "industry_sector": "construction",
                            "headquarters_region": "scotland",
                        },
                    },
                    "timeout": 2.0,
                }
            ]
        }
    }


class PreviewRequest(BaseModel):
    """Request for a preview of applicable laws."""

    organization: Organization
    limit: int = Field(10, ge=1, le=100, description="Maximum records")


class CountResponse(BaseModel):
    """Applicable law count."""

    organization_id: str
    applicable_law_count: int


class ProfileChangeRequest(BaseModel):
    """Notification that an organization's profile changed."""

    organization: Organization = Field(..., description="Organization with the updated profile")
    changed_fields: list[str] = Field(..., min_length=1)
    wait: bool = Field(False, description="Wait for the re-screen to finish")


class LocationChangeRequest(BaseModel):
    """Notification that an organization's locations changed."""

    organization: Organization
    wait: bool = False


class LocationChangeResponse(BaseModel):
    organization_id: str
    generation: int


# =============================================================================
# Routes
# =============================================================================


@router.post("/screen", response_model=ScreeningResult)
async def screen_organization(
    request: ScreenRequest,
    matcher: ApplicabilityMatcher = Depends(get_matcher),
) -> ScreeningResult:
    """
    Screen an organization at the tier its profile justifies.

    Store outages return a result with `degraded: true` instead of an error.
    """
    return await matcher.screen(request.organization, timeout=request.timeout)


@router.post("/count", response_model=CountResponse)
async def count_applicable_laws(
    organization: Organization,
    matcher: ApplicabilityMatcher = Depends(get_matcher),
) -> CountResponse:
    """Count applicable duty-creating laws."""
    count = await matcher.count(organization)
    return CountResponse(organization_id=organization.id, applicable_law_count=count)


@router.post("/preview", response_model=list[LawRecord])
async def preview_applicable_laws(
    request: PreviewRequest,
    matcher: ApplicabilityMatcher = Depends(get_matcher),
) -> list[LawRecord]:
    """Sample of applicable laws, newest first."""
    return await matcher.preview(request.organization, limit=request.limit)


@router.post("/complexity", response_model=dict[str, Any])
async def analyze_complexity(
    organization: Organization,
    matcher: ApplicabilityMatcher = Depends(get_matcher),
) -> dict[str, Any]:
    """
    Analyze profile completeness, data quality and readiness.

    Reports both completeness schemes alongside the resulting query strategy.
    """
    analysis = matcher.analyze_complexity(organization)

    logger.info(
        "complexity_analyzed",
        organization_id=organization.id,
        score=analysis["score"],
        tier=analysis["tier"],
    )

    return analysis


@router.post("/aggregate", response_model=AggregatedLawSet)
async def aggregate_locations(
    organization: Organization,
    aggregator: LocationAggregator = Depends(get_aggregator),
) -> AggregatedLawSet:
    """Deduplicated applicable laws across active locations."""
    return await aggregator.aggregate(organization)


@router.post("/profile-changes", response_model=dict[str, Any])
async def profile_changed(
    request: ProfileChangeRequest,
    streamer: ResultStreamer = Depends(get_streamer),
) -> dict[str, Any]:
    """
    Report a profile change.

    Returns once the re-screen is scheduled unless `wait` is set.
    """
    impact = await streamer.on_profile_changed(
        request.organization,
        request.changed_fields,
        wait=request.wait,
    )
    return asdict(impact)


@router.post("/location-changes", response_model=LocationChangeResponse)
async def locations_changed(
    request: LocationChangeRequest,
    streamer: ResultStreamer = Depends(get_streamer),
) -> LocationChangeResponse:
    """Report a change to the organization's locations. Always re-screens."""
    generation = await streamer.on_locations_changed(request.organization, wait=request.wait)
    return LocationChangeResponse(organization_id=request.organization.id, generation=generation)
