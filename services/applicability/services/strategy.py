"""
Query Strategy Service
======================

Turns a profile completeness score into concrete regulation-store query
parameters for the justified complexity tier.

Parameters accumulate per tier:
- BASIC: classification, geographic extent, in-force status
- ENHANCED: + employee range, operational regions, business activities
- COMPREHENSIVE: + turnover range, compliance requirements, risk profile,
  special circumstances

Lookups never fail. An unmapped sector leaves the classification open and
an unmapped region falls back to the nationwide extent.

Version: 0.1.0
"""

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

from shared.config import ScreeningSettings, settings
from shared.logging import get_logger
from shared.models.organization import OrganizationProfile
from shared.models.regulation import IN_FORCE_STATUS

from services.applicability.models.screening import ComplexityTier
from services.applicability.services.profile import (
    BASIC_FIELDS,
    CompletenessScore,
    ProfileAnalyzer,
    as_profile,
    has_meaningful_value,
)


logger = get_logger(__name__)


# =============================================================================
# Lookup Tables
# =============================================================================

SECTOR_CLASSIFICATIONS: dict[str, str] = {
    "construction": "CONSTRUCTION",
    "healthcare": "HEALTH",
    "health": "HEALTH",
    "manufacturing": "MANUFACTURING",
    "education": "EDUCATION",
    "fire_safety": "FIRE",
    "fire": "FIRE",
    "transport": "TRANSPORT",
    "transportation": "TRANSPORT",
    "energy": "ENERGY",
    "environment": "ENVIRONMENT",
    "waste": "WASTE",
    "water": "WATER",
    "food": "FOOD",
    "agriculture": "AGRICULTURE",
    "mining": "MINING",
    "chemicals": "CHEMICALS",
    "nuclear": "NUCLEAR",
    "telecommunications": "TELECOMMUNICATIONS",
}

NATIONWIDE_EXTENT = "United Kingdom"

REGION_EXTENTS: dict[str, str] = {
    "england": "England",
    "wales": "Wales",
    "scotland": "Scotland",
    "northern_ireland": "Northern Ireland",
    "great_britain": "Great Britain",
    "united_kingdom": "United Kingdom",
}

# Every extent whose laws reach an organization operating in the region
REGION_APPLICABLE_EXTENTS: dict[str, tuple[str, ...]] = {
    "england": ("England", "England and Wales", "Great Britain", "United Kingdom"),
    "wales": ("Wales", "England and Wales", "Great Britain", "United Kingdom"),
    "scotland": ("Scotland", "Great Britain", "United Kingdom"),
    "northern_ireland": ("Northern Ireland", "United Kingdom"),
    "great_britain": ("Great Britain", "United Kingdom"),
    "united_kingdom": ("United Kingdom",),
}

# Duty holders every organization answers as
GENERAL_DUTY_HOLDERS: frozenset[str] = frozenset(
    {
        "Ind: Person",
        "Org: Employer",
        "Org: Company",
        "Org: Owner",
        "Org: Occupier",
    }
)

ACTIVITY_DUTY_HOLDERS: dict[str, tuple[str, ...]] = {
    "construction": ("Org: Principal Contractor", "Org: Contractor", "Ind: Designer"),
    "design": ("Ind: Designer",),
    "manufacturing": ("Org: Manufacturer", "Org: Producer"),
    "production": ("Org: Producer",),
    "import": ("Org: Importer",),
    "distribution": ("Org: Distributor", "Org: Supplier"),
    "retail": ("Org: Supplier", "Org: Distributor"),
    "transport": ("Org: Carrier", "Org: Operator"),
    "logistics": ("Org: Carrier", "Org: Consignor"),
    "waste_management": ("Org: Waste Producer", "Org: Waste Carrier"),
    "waste": ("Org: Waste Producer",),
    "installation": ("Org: Installer",),
    "maintenance": ("Org: Installer", "Org: Operator"),
    "chemicals": ("Org: Manufacturer", "Org: Importer", "Org: Downstream User"),
    "food": ("Org: Food Business Operator",),
    "energy": ("Org: Operator", "Org: Licence Holder"),
    "healthcare": ("Org: Care Provider",),
}


def normalize_key(value: Any) -> str | None:
    """Lower-case lookup key with spaces and hyphens folded to underscores."""
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def classification_for_sector(sector: str | None) -> str | None:
    """Regulation family for an industry sector, None when unmapped."""
    key = normalize_key(sector)
    return SECTOR_CLASSIFICATIONS.get(key) if key else None


def geo_extent_for_region(region: str | None) -> str:
    """Geographic extent for a region, nationwide when unmapped."""
    key = normalize_key(region)
    return REGION_EXTENTS.get(key, NATIONWIDE_EXTENT) if key else NATIONWIDE_EXTENT


def applicable_extents(regions: Iterable[str | None]) -> list[str]:
    """Ordered union of the extents reaching any of the given regions."""
    extents: dict[str, None] = {}
    for region in regions:
        key = normalize_key(region)
        for extent in REGION_APPLICABLE_EXTENTS.get(key or "", (NATIONWIDE_EXTENT,)):
            extents[extent] = None
    return list(extents) or [NATIONWIDE_EXTENT]


def duty_holders_for_activities(activities: Iterable[str] | None) -> set[str]:
    """General duty holders plus those implied by the declared activities."""
    holders = set(GENERAL_DUTY_HOLDERS)
    for activity in activities or ():
        holders.update(ACTIVITY_DUTY_HOLDERS.get(normalize_key(activity) or "", ()))
    return holders


def employee_range(count: int | None) -> str:
    """Employee size bracket name."""
    if count is None:
        return "unknown"
    if count < 10:
        return "micro"
    if count < 50:
        return "small"
    if count < 250:
        return "medium"
    if count < 1000:
        return "large"
    return "enterprise"


def turnover_range(turnover: float | None) -> str:
    """Turnover size bracket name."""
    if turnover is None:
        return "unknown"
    if turnover < 100_000:
        return "micro"
    if turnover < 1_000_000:
        return "small"
    if turnover < 10_000_000:
        return "medium"
    if turnover < 50_000_000:
        return "large"
    return "enterprise"


# =============================================================================
# Filter Fields
# =============================================================================

_BASIC_FILTER_FIELDS = ("industry_sector", "headquarters_region")
_ENHANCED_FILTER_FIELDS = _BASIC_FILTER_FIELDS + (
    "total_employees",
    "operational_regions",
    "business_activities",
)
_COMPREHENSIVE_FILTER_FIELDS = _ENHANCED_FILTER_FIELDS + (
    "annual_turnover",
    "compliance_requirements",
    "risk_profile",
)

TIER_FILTER_FIELDS: dict[ComplexityTier, frozenset[str]] = {
    ComplexityTier.BASIC: frozenset(_BASIC_FILTER_FIELDS),
    ComplexityTier.ENHANCED: frozenset(_ENHANCED_FILTER_FIELDS),
    ComplexityTier.COMPREHENSIVE: frozenset(_COMPREHENSIVE_FILTER_FIELDS),
}


def relevant_fields(tier: ComplexityTier) -> frozenset[str]:
    """
    Profile fields consumed as filters at a tier.

    special_circumstances travels with comprehensive queries as context
    but never filters anything, so it is not listed.
    """
    return TIER_FILTER_FIELDS[tier]


# =============================================================================
# Strategy
# =============================================================================


@dataclass
class QueryParams:
    """Regulation-store query parameters for one tier."""

    tier: ComplexityTier
    classification: str | None
    geo_extent: str
    status: str = IN_FORCE_STATUS

    # Enhanced
    employee_range: str | None = None
    operational_regions: list[str] | None = None
    business_activities: list[str] | None = None

    # Comprehensive
    turnover_range: str | None = None
    compliance_requirements: list[str] | None = None
    risk_profile: str | None = None
    special_circumstances: str | None = None

    def filters_applied(self) -> list[str]:
        """Names of the parameters that carry a value."""
        return [
            name
            for name, value in asdict(self).items()
            if name not in ("tier", "special_circumstances") and value is not None
        ]


@dataclass
class PerformanceEstimate:
    """Rough cost of a tier's query."""

    estimated_time_ms: int
    cache_effectiveness: str


PERFORMANCE_ESTIMATES: dict[ComplexityTier, PerformanceEstimate] = {
    ComplexityTier.BASIC: PerformanceEstimate(50, "high"),
    ComplexityTier.ENHANCED: PerformanceEstimate(150, "medium"),
    ComplexityTier.COMPREHENSIVE: PerformanceEstimate(400, "low"),
}


@dataclass
class QueryStrategy:
    """Everything needed to run and cache one screening query."""

    tier: ComplexityTier
    params: QueryParams
    completeness: CompletenessScore
    cache_ttl_seconds: int
    performance_estimate: PerformanceEstimate
    fallback_strategy: str = "use_profile_as_is"
    extents: list[str] = field(default_factory=list)


class QueryStrategyBuilder:
    """
    Builds query strategies from organization profiles.

    Deterministic: the same profile and settings always produce the same
    strategy. Never raises on missing or unknown inputs.
    """

    def __init__(
        self,
        analyzer: ProfileAnalyzer | None = None,
        screening: ScreeningSettings | None = None,
    ) -> None:
        self.screening = screening or settings.screening
        self.analyzer = analyzer or ProfileAnalyzer(scheme=self.screening.completeness_scheme)

    def build(self, organization: Any) -> QueryStrategy:
        """
        Build the query strategy for an organization.

        Args:
            organization: Organization, OrganizationProfile or raw mapping

        Returns:
            QueryStrategy at the tier justified by the profile
        """
        profile = as_profile(organization)
        completeness = self.analyzer.analyze(profile)
        tier = completeness.tier

        params = self.build_params(profile, tier)
        strategy = QueryStrategy(
            tier=tier,
            params=params,
            completeness=completeness,
            cache_ttl_seconds=self.cache_ttl(tier, profile.total_employees),
            performance_estimate=PERFORMANCE_ESTIMATES[tier],
            fallback_strategy=self.fallback_strategy(profile),
            extents=self.extents_for(profile),
        )

        logger.debug(
            "query_strategy_built",
            tier=tier.value,
            classification=params.classification,
            geo_extent=params.geo_extent,
            ttl_seconds=strategy.cache_ttl_seconds,
        )

        return strategy

    def build_params(self, profile: OrganizationProfile, tier: ComplexityTier) -> QueryParams:
        """Accumulate the query parameters for a tier."""
        params = QueryParams(
            tier=tier,
            classification=classification_for_sector(profile.industry_sector),
            geo_extent=geo_extent_for_region(profile.headquarters_region),
        )

        if tier.rank >= ComplexityTier.ENHANCED.rank:
            params.employee_range = employee_range(profile.total_employees)
            params.operational_regions = profile.operational_regions or None
            params.business_activities = profile.business_activities or None

        if tier == ComplexityTier.COMPREHENSIVE:
            params.turnover_range = turnover_range(profile.annual_turnover)
            params.compliance_requirements = profile.compliance_requirements or None
            params.risk_profile = profile.risk_profile
            params.special_circumstances = profile.special_circumstances

        return params

    def extents_for(self, profile: OrganizationProfile) -> list[str]:
        """Extents reaching the headquarters and every declared region."""
        return applicable_extents([profile.headquarters_region, *(profile.operational_regions or [])])

    def cache_ttl(self, tier: ComplexityTier, total_employees: int | None) -> int:
        """
        Cache TTL in seconds.

        Coarser tiers cache longer; larger organizations change less often
        so their entries live up to twice as long.
        """
        base = {
            ComplexityTier.BASIC: self.screening.basic_ttl_seconds,
            ComplexityTier.ENHANCED: self.screening.enhanced_ttl_seconds,
            ComplexityTier.COMPREHENSIVE: self.screening.comprehensive_ttl_seconds,
        }[tier]

        employees = total_employees or 0
        if employees > 1000:
            stability = 2.0
        elif employees > 100:
            stability = 1.5
        else:
            stability = 1.0

        return int(base * stability)

    def fallback_strategy(self, profile: OrganizationProfile) -> str:
        """How to treat gaps in the basic identification fields."""
        completed = sum(1 for f in BASIC_FIELDS if has_meaningful_value(getattr(profile, f)))
        if completed < 2:
            return "use_sector_defaults"
        if completed < 4:
            return "interpolate_missing_fields"
        return "use_profile_as_is"
