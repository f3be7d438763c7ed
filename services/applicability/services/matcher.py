"""
Applicability Matcher
=====================

Entry point of the screening engine. Maps an organization to regulation
store queries, runs them through the screening cache and returns a
structured ScreeningResult.

Flow:
1. ProfileAnalyzer scores the profile and picks the tier
2. QueryStrategyBuilder builds the tier's query parameters and TTL
3. ScreeningCache returns a fresh result or computes one
4. On a miss the store is queried for duty-creating laws only; enhanced
   and comprehensive tiers narrow the basic candidate set further

Store outages and timeouts never reach the caller. They produce a result
tagged `degraded` with zero laws and confidence "none", which is not cached.

Version: 0.1.0
"""

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from shared.config import ScreeningSettings, settings
from shared.logging import get_logger
from shared.models.organization import Organization, OrganizationProfile
from shared.models.regulation import LawRecord

from services.applicability.models.screening import (
    TIER_CONFIDENCE,
    ComplexityTier,
    RiskAssessment,
    ScreeningResult,
)
from services.applicability.services.cache import InMemoryScreeningCache, ScreeningCache
from services.applicability.services.profile import ProfileAnalyzer
from services.applicability.services.store import (
    RegulationStore,
    RegulationStoreError,
    RegulationStoreTimeout,
)
from services.applicability.services.strategy import (
    QueryStrategy,
    QueryStrategyBuilder,
    duty_holders_for_activities,
    normalize_key,
)


logger = get_logger(__name__)

T = TypeVar("T")

TIMEOUT_REASON = "timeout"

# Used when the screened records carry no classification
DEFAULT_PRIORITY_AREAS = ["health_safety", "environmental", "data_protection"]


@dataclass
class ApplicableLaws:
    """Full applicable-law identifier set for one (possibly derived) organization."""

    law_ids: set[str]
    tier: ComplexityTier
    degraded: bool = False
    degraded_reason: str | None = None


def _consume_result(task: "asyncio.Future[Any]") -> None:
    """Retrieve a detached task's outcome so failures are not reported as unhandled."""
    if not task.cancelled():
        task.exception()


class ApplicabilityMatcher:
    """
    Screens organizations against the regulation corpus.

    Safe to share across concurrent requests; all mutable state lives in
    the injected cache.
    """

    def __init__(
        self,
        store: RegulationStore,
        cache: ScreeningCache | None = None,
        builder: QueryStrategyBuilder | None = None,
        screening: ScreeningSettings | None = None,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            store: Regulation corpus
            cache: Screening cache (in-memory by default)
            builder: Query strategy builder
            screening: Screening settings (global settings by default)
        """
        self.store = store
        self.screening = screening or settings.screening
        self.cache = cache or InMemoryScreeningCache(max_entries=self.screening.cache_max_entries)
        self.builder = builder or QueryStrategyBuilder(screening=self.screening)

    @property
    def analyzer(self) -> ProfileAnalyzer:
        return self.builder.analyzer

    # =========================================================================
    # Public API
    # =========================================================================

    def build_strategy(self, organization: Organization | OrganizationProfile) -> QueryStrategy:
        """Query strategy for an organization's current profile."""
        return self.builder.build(organization)

    async def screen(
        self,
        organization: Organization,
        timeout: float | None = None,
        cache_key: str | None = None,
    ) -> ScreeningResult:
        """
        Screen an organization at the tier its profile justifies.

        Args:
            organization: Organization to screen
            timeout: Seconds to wait before falling back to a cached lower
                tier (settings default when None)
            cache_key: Cache identity, the organization id by default

        Returns:
            ScreeningResult, degraded when the store could not answer
        """
        strategy = self.build_strategy(organization)
        key = cache_key or organization.id
        timeout = timeout if timeout is not None else self.screening.screen_timeout_seconds

        async def compute() -> ScreeningResult:
            return await self._run_screen(organization, strategy)

        # Shielded so a caller timing out doesn't cancel the shared computation
        task = asyncio.ensure_future(
            self.cache.get_or_compute(key, strategy.tier, compute, strategy.cache_ttl_seconds)
        )
        task.add_done_callback(_consume_result)

        try:
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            return await self._timeout_fallback(organization, key, strategy, timeout)
        except RegulationStoreError as e:
            logger.warning(
                "screening_degraded",
                organization_id=organization.id,
                tier=strategy.tier.value,
                reason=e.reason,
                error=str(e),
            )
            return ScreeningResult.degraded_for(
                organization.id,
                strategy.tier,
                e.reason,
                organization_profile=self._echo_profile(organization.profile, strategy),
            )

    async def count(self, organization: Organization) -> int:
        """Applicable duty-creating law count (0 when degraded)."""
        result = await self.screen(organization)
        return result.applicable_law_count

    async def preview(self, organization: Organization, limit: int = 10) -> list[LawRecord]:
        """
        Up to `limit` applicable laws, queried directly (not cached).

        Returns an empty list when the store is unavailable.
        """
        strategy = self.build_strategy(organization)
        params = strategy.params
        try:
            if strategy.tier == ComplexityTier.BASIC:
                records = await self._bounded(
                    self.store.preview(
                        params.classification, params.geo_extent, params.status, limit
                    )
                )
                return [r for r in records if r.is_duty_creating]

            candidates = await self._bounded(
                self.store.candidates(params.classification, params.geo_extent, params.status)
            )
            return self.narrow(candidates, strategy)[: max(0, limit)]
        except RegulationStoreError as e:
            logger.warning(
                "preview_degraded",
                organization_id=organization.id,
                reason=e.reason,
                error=str(e),
            )
            return []

    def analyze_complexity(self, organization: Organization | OrganizationProfile) -> dict[str, Any]:
        """Profile analysis plus the query strategy it leads to."""
        analysis = self.analyzer.analyze_organization_profile(organization)
        strategy = self.build_strategy(organization)
        analysis["query_strategy"] = {
            "tier": strategy.tier.value,
            "params": asdict(strategy.params),
            "filters_applied": strategy.params.filters_applied(),
            "cache_ttl_seconds": strategy.cache_ttl_seconds,
            "performance_estimate": asdict(strategy.performance_estimate),
            "fallback_strategy": strategy.fallback_strategy,
            "applicable_extents": strategy.extents,
        }
        return analysis

    async def applicable_law_ids(self, organization: Organization) -> ApplicableLaws:
        """
        Every applicable law identifier for an organization.

        Queries the full candidate set (not just a preview) and narrows it
        at the justified tier. Not cached.
        """
        strategy = self.build_strategy(organization)
        params = strategy.params
        try:
            candidates = await self._bounded(
                self.store.candidates(params.classification, params.geo_extent, params.status)
            )
        except RegulationStoreError as e:
            logger.warning(
                "law_ids_degraded",
                organization_id=organization.id,
                reason=e.reason,
                error=str(e),
            )
            return ApplicableLaws(set(), strategy.tier, degraded=True, degraded_reason=e.reason)

        return ApplicableLaws({r.id for r in self.narrow(candidates, strategy)}, strategy.tier)

    # =========================================================================
    # Narrowing
    # =========================================================================

    def narrow(self, records: list[LawRecord], strategy: QueryStrategy) -> list[LawRecord]:
        """
        Progressively narrow basic-tier candidates.

        Only duty-creating records survive at any tier. Filters whose input
        was not declared are skipped rather than excluding anything.
        """
        params = strategy.params
        narrowed = [r for r in records if r.is_duty_creating]

        if strategy.tier == ComplexityTier.BASIC:
            return narrowed

        if params.operational_regions:
            extents = set(strategy.extents)
            narrowed = [r for r in narrowed if r.geo_extent is None or r.geo_extent in extents]

        if params.business_activities:
            holders = duty_holders_for_activities(params.business_activities)
            narrowed = [r for r in narrowed if not r.duty_holders or holders & set(r.duty_holders)]

        if strategy.tier == ComplexityTier.COMPREHENSIVE and params.compliance_requirements:
            tags = [t for t in map(normalize_key, params.compliance_requirements) if t]
            # Stable sort keeps newest-first order within each group
            narrowed.sort(key=lambda r: 0 if self._matches_tags(r, tags) else 1)

        return narrowed

    def _matches_tags(self, record: LawRecord, tags: list[str]) -> bool:
        haystack = " ".join(
            v for v in (record.classification, record.name, record.title, record.description) if v
        ).lower()
        return any(tag.replace("_", " ") in haystack or tag in haystack for tag in tags)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        """Await a store call within the store timeout."""
        limit = self.screening.store_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, limit)
        except asyncio.TimeoutError as e:
            raise RegulationStoreTimeout(f"Store query exceeded {limit}s") from e

    async def _run_screen(
        self,
        organization: Organization,
        strategy: QueryStrategy,
    ) -> ScreeningResult:
        """Query the store and assemble a result. Raises RegulationStoreError."""
        start = time.perf_counter()
        params = strategy.params
        tier = strategy.tier
        limit = self.screening.preview_limit

        if tier == ComplexityTier.BASIC:
            count, records = await asyncio.gather(
                self._bounded(
                    self.store.count(params.classification, params.geo_extent, params.status)
                ),
                self._bounded(
                    self.store.preview(
                        params.classification, params.geo_extent, params.status, limit
                    )
                ),
            )
            applicable = [r for r in records if r.is_duty_creating]
        else:
            candidates = await self._bounded(
                self.store.candidates(params.classification, params.geo_extent, params.status)
            )
            applicable = self.narrow(candidates, strategy)
            count = len(applicable)

        priority_areas: list[str] = []
        risk_assessment = None
        if tier != ComplexityTier.BASIC:
            priority_areas = self._priority_areas(applicable)
        if tier == ComplexityTier.COMPREHENSIVE:
            risk_assessment = self._risk_assessment(
                organization.profile, applicable, priority_areas
            )

        result = ScreeningResult(
            organization_id=organization.id,
            tier=tier,
            applicable_law_count=count,
            sample_regulations=applicable[:limit],
            screening_method=f"{tier.value}_applicability",
            organization_profile=self._echo_profile(organization.profile, strategy),
            confidence_level=TIER_CONFIDENCE[tier],
            filters_applied=params.filters_applied(),
            risk_assessment=risk_assessment,
            priority_areas=priority_areas,
        )

        logger.info(
            "screening_completed",
            organization_id=organization.id,
            tier=tier.value,
            applicable_law_count=count,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )

        return result

    async def _timeout_fallback(
        self,
        organization: Organization,
        key: str,
        strategy: QueryStrategy,
        timeout: float,
    ) -> ScreeningResult:
        """Best cached result at or below the requested tier, else degraded."""
        for tier in strategy.tier.at_or_below():
            cached = await self.cache.peek(key, tier)
            if cached is not None:
                logger.info(
                    "screening_timeout_fallback",
                    organization_id=organization.id,
                    requested_tier=strategy.tier.value,
                    served_tier=tier.value,
                    timeout=timeout,
                )
                return cached

        logger.warning(
            "screening_timeout",
            organization_id=organization.id,
            tier=strategy.tier.value,
            timeout=timeout,
        )
        return ScreeningResult.degraded_for(
            organization.id,
            strategy.tier,
            TIMEOUT_REASON,
            organization_profile=self._echo_profile(organization.profile, strategy),
        )

    def _echo_profile(self, profile: OrganizationProfile, strategy: QueryStrategy) -> dict[str, Any]:
        """Profile attributes the result was matched on."""
        return {
            "industry_sector": profile.industry_sector,
            "headquarters_region": profile.headquarters_region,
            "total_employees": profile.total_employees,
            "mapped_family": strategy.params.classification,
            "geo_extent": strategy.params.geo_extent,
            "applicable_extents": strategy.extents,
            "completeness_score": strategy.completeness.score,
        }

    def _priority_areas(self, records: list[LawRecord]) -> list[str]:
        areas: dict[str, None] = {}
        for record in records:
            key = normalize_key(record.classification)
            if key:
                areas[key] = None
        return list(areas)[:5] or list(DEFAULT_PRIORITY_AREAS)

    def _risk_assessment(
        self,
        profile: OrganizationProfile,
        records: list[LawRecord],
        priority_areas: list[str],
    ) -> RiskAssessment:
        risk_level = (profile.risk_profile or "medium").strip().lower() or "medium"

        actions = [
            f"Review the {len(records)} duty-creating regulations in: {', '.join(priority_areas)}"
        ]
        if profile.operational_regions:
            actions.append("Ensure environmental compliance for your operational regions")
        if profile.business_activities:
            actions.append("Validate data protection requirements for your business activities")
        if risk_level in ("high", "critical"):
            actions.append("Schedule a detailed compliance review for the elevated risk profile")

        return RiskAssessment(
            risk_level=risk_level,
            applicable_regulation_count=len(records),
            priority_areas=priority_areas,
            recommended_actions=actions,
        )
