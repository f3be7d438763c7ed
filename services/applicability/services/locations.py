"""
Location Aggregation Service
============================

Rolls screening up across an organization's active locations.

- No active locations: empty law set
- One active location: that location's own ScreeningResult, cached under
  the location key, alongside its full identifier set
- Several: each location is screened as a standalone organization with
  its own region, headcount and activities; the identifier sets plus
  organization-wide obligations are unioned by law id

Organization-wide obligations depend only on the legal entity type and
are part of every location's set, so the union never exceeds the sum of
per-location counts.

Version: 0.1.0
"""

import asyncio
from typing import Any

from shared.logging import get_logger
from shared.models.organization import Location, Organization, OrganizationProfile

from services.applicability.models.screening import AggregatedLawSet, AggregationMode
from services.applicability.services.cache import location_cache_key
from services.applicability.services.matcher import ApplicabilityMatcher
from services.applicability.services.strategy import normalize_key


logger = get_logger(__name__)


ORGANIZATION_WIDE_OBLIGATIONS: dict[str, tuple[str, ...]] = {
    "limited_company": ("corp_gov_001", "financial_reporting_001", "directors_duties_001"),
    "public_limited_company": (
        "corp_gov_001",
        "financial_reporting_001",
        "directors_duties_001",
        "listing_rules_001",
    ),
    "partnership": ("partnership_001", "tax_reporting_001"),
    "limited_liability_partnership": ("llp_reporting_001", "tax_reporting_001"),
    "sole_trader": ("sole_trader_001", "personal_tax_001"),
    "charity": ("charity_reporting_001", "trustee_duties_001"),
}

ENTITY_TYPE_ALIASES: dict[str, str] = {
    "ltd": "limited_company",
    "private_limited_company": "limited_company",
    "plc": "public_limited_company",
    "llp": "limited_liability_partnership",
}

DEFAULT_OBLIGATIONS: tuple[str, ...] = ("general_business_001",)


def organization_wide_obligations(organization_type: Any) -> list[str]:
    """Obligation ids every location of this legal entity type carries."""
    key = normalize_key(organization_type)
    if key is None:
        return list(DEFAULT_OBLIGATIONS)
    key = ENTITY_TYPE_ALIASES.get(key, key)
    return list(ORGANIZATION_WIDE_OBLIGATIONS.get(key, DEFAULT_OBLIGATIONS))


def location_profile(organization: Organization, location: Location) -> OrganizationProfile:
    """
    Profile of a location screened as a standalone organization.

    Region always comes from the location; headcount, turnover and
    activities only when the location states them.
    """
    update: dict[str, Any] = {
        "headquarters_region": location.geographic_region,
        "operational_regions": [location.geographic_region],
    }
    if location.employee_count is not None:
        update["total_employees"] = location.employee_count
    if location.annual_revenue is not None:
        update["annual_turnover"] = location.annual_revenue
    if location.industry_activities:
        update["business_activities"] = list(location.industry_activities)
    return organization.profile.model_copy(update=update)


def location_organization(organization: Organization, location: Location) -> Organization:
    """Standalone organization view of one location."""
    return Organization(id=organization.id, profile=location_profile(organization, location))


class LocationAggregator:
    """Deduplicated applicable-law sets across locations."""

    def __init__(self, matcher: ApplicabilityMatcher) -> None:
        self.matcher = matcher

    async def aggregate(self, organization: Organization) -> AggregatedLawSet:
        """
        Aggregate applicable laws over the organization's active locations.

        Inactive locations are ignored entirely.
        """
        active = organization.active_locations()
        org_wide = organization_wide_obligations(organization.profile.organization_type)

        if not active:
            logger.debug("aggregation_no_locations", organization_id=organization.id)
            return AggregatedLawSet(
                organization_id=organization.id,
                mode=AggregationMode.NO_LOCATIONS,
                organization_wide_ids=org_wide,
            )

        if len(active) == 1:
            return await self._single_location(organization, active[0], org_wide)

        return await self._multi_location(organization, active, org_wide)

    async def _single_location(
        self,
        organization: Organization,
        location: Location,
        org_wide: list[str],
    ) -> AggregatedLawSet:
        standalone = location_organization(organization, location)
        result, laws = await asyncio.gather(
            self.matcher.screen(
                standalone,
                cache_key=location_cache_key(organization.id, location.id),
            ),
            self.matcher.applicable_law_ids(standalone),
        )

        # Same identifier set a second identical location would contribute
        ids = laws.law_ids | set(org_wide)
        return AggregatedLawSet(
            organization_id=organization.id,
            mode=AggregationMode.SINGLE_LOCATION,
            law_ids=sorted(ids),
            count=len(ids),
            location_counts={location.id: len(ids)},
            organization_wide_ids=org_wide,
            screening_result=result,
            degraded=result.degraded or laws.degraded,
        )

    async def _multi_location(
        self,
        organization: Organization,
        locations: list[Location],
        org_wide: list[str],
    ) -> AggregatedLawSet:
        per_location = await asyncio.gather(
            *(
                self.matcher.applicable_law_ids(location_organization(organization, loc))
                for loc in locations
            )
        )

        union: set[str] = set()
        location_counts: dict[str, int] = {}
        for location, laws in zip(locations, per_location):
            ids = laws.law_ids | set(org_wide)
            location_counts[location.id] = len(ids)
            union |= ids

        degraded = any(laws.degraded for laws in per_location)

        logger.info(
            "locations_aggregated",
            organization_id=organization.id,
            locations=len(locations),
            unique_laws=len(union),
            summed_laws=sum(location_counts.values()),
            degraded=degraded,
        )

        return AggregatedLawSet(
            organization_id=organization.id,
            mode=AggregationMode.MULTI_LOCATION,
            law_ids=sorted(union),
            count=len(union),
            location_counts=location_counts,
            organization_wide_ids=org_wide,
            degraded=degraded,
        )
