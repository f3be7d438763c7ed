"""
Profile Analysis Service
========================

Scores how complete and trustworthy an organization profile is, and maps
that score to a screening complexity tier.

Completeness Schemes:
- field_groups: 0.4 basic identification + 0.3 operational detail
  + 0.2 compliance context + 0.1 risk assessment
- two_phase: 0.4 phase-one (basic) fields + 0.5 phase-two (extended)
  fields + 0.1 data-quality indicators

Only one scheme drives tier selection (configurable, field_groups by
default). The other is still computed for reporting.

Tier Thresholds:
- COMPREHENSIVE: score >= 0.8
- ENHANCED: score >= 0.5
- BASIC: otherwise

Version: 0.1.0
"""

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from shared.config import CompletenessScheme
from shared.logging import get_logger
from shared.models.organization import Organization, OrganizationProfile

from services.applicability.models.screening import ComplexityTier


logger = get_logger(__name__)


COMPREHENSIVE_THRESHOLD = 0.8
ENHANCED_THRESHOLD = 0.5


# =============================================================================
# Field Groups
# =============================================================================

BASIC_FIELDS = (
    "organization_name",
    "organization_type",
    "headquarters_region",
    "industry_sector",
)

OPERATIONAL_FIELDS = (
    "total_employees",
    "annual_turnover",
    "operational_regions",
    "business_activities",
    "primary_sic_code",
)

COMPLIANCE_FIELDS = (
    "compliance_requirements",
    "registration_number",
    "risk_profile",
)

RISK_FIELDS = (
    "risk_profile",
    "special_circumstances",
)

PHASE_TWO_FIELDS = (
    "operational_regions",
    "annual_turnover",
    "business_activities",
    "total_employees",
    "primary_sic_code",
    "compliance_requirements",
    "risk_profile",
)

ALL_FIELDS = tuple(
    dict.fromkeys(BASIC_FIELDS + OPERATIONAL_FIELDS + COMPLIANCE_FIELDS + RISK_FIELDS)
)

# Readiness uses a narrower enhanced set than the operational group
ENHANCED_READINESS_FIELDS = (
    "total_employees",
    "operational_regions",
    "business_activities",
)


# =============================================================================
# Quality Issues
# =============================================================================

ISSUE_INCOMPLETE = "Incomplete profile data"
ISSUE_INCONSISTENT = "Data consistency issues detected"
ISSUE_INVALID = "Invalid data values found"
ISSUE_SIZE_MISMATCH = "Employee count and turnover suggest different company sizes"
ISSUE_HQ_NOT_OPERATIONAL = "Headquarters region not included in operational regions"

IMPROVEMENT_SUGGESTIONS: dict[str, str] = {
    ISSUE_INCOMPLETE: "Complete missing required fields to improve screening accuracy",
    ISSUE_INCONSISTENT: "Review profile data for inconsistencies between related fields",
    ISSUE_INVALID: "Validate and correct invalid data entries",
    ISSUE_SIZE_MISMATCH: "Check that employee count and annual turnover are both current",
    ISSUE_HQ_NOT_OPERATIONAL: "Add the headquarters region to the operational regions",
}


# =============================================================================
# Results
# =============================================================================


@dataclass
class CompletenessWeights:
    """Category weights for both completeness schemes."""

    field_groups: dict[str, float] = field(
        default_factory=lambda: {
            "basic_identification": 0.4,  # Critical for basic matching
            "operational_details": 0.3,
            "compliance_context": 0.2,
            "risk_assessment": 0.1,
        }
    )

    two_phase: dict[str, float] = field(
        default_factory=lambda: {
            "phase_one": 0.4,
            "phase_two": 0.5,
            "data_quality": 0.1,
        }
    )


@dataclass
class DataQualityReport:
    """Advisory data-quality findings. Never blocks scoring."""

    overall_quality: float
    data_confidence: float

    field_completeness_ratio: float
    consistency_ratio: float
    validity_ratio: float

    validity_checks: dict[str, bool] = field(default_factory=dict)
    coherence_issues: list[str] = field(default_factory=list)
    identified_issues: list[str] = field(default_factory=list)
    improvement_suggestions: list[str] = field(default_factory=list)

    @property
    def is_coherent(self) -> bool:
        return not self.coherence_issues


@dataclass
class CompletenessScore:
    """Result of profile completeness analysis."""

    score: float  # 0.0 to 1.0
    tier: ComplexityTier
    scheme: CompletenessScheme

    category_scores: dict[str, float] = field(default_factory=dict)
    weights_applied: dict[str, float] = field(default_factory=dict)
    completeness_level: str = "insufficient"
    missing_fields: dict[str, list[str]] = field(default_factory=dict)

    quality: DataQualityReport | None = None


# =============================================================================
# Helpers
# =============================================================================


def has_meaningful_value(value: Any) -> bool:
    """
    Whether a profile value counts towards completeness.

    None, blank strings, empty collections and non-positive numbers do not.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (int, float)):
        return value > 0
    if isinstance(value, (list, tuple, set, frozenset, Mapping)):
        return len(value) > 0
    return True


def field_completeness(profile: OrganizationProfile, fields: Iterable[str]) -> float:
    """Share of the given fields holding a meaningful value."""
    fields = tuple(fields)
    if not fields:
        return 1.0
    completed = sum(1 for f in fields if has_meaningful_value(getattr(profile, f, None)))
    return completed / len(fields)


def missing_fields(profile: OrganizationProfile, fields: Iterable[str]) -> list[str]:
    """Fields without a meaningful value, in declaration order."""
    return [f for f in fields if not has_meaningful_value(getattr(profile, f, None))]


def tier_for_score(score: float) -> ComplexityTier:
    """Map a completeness score to the complexity tier it justifies."""
    if score >= COMPREHENSIVE_THRESHOLD:
        return ComplexityTier.COMPREHENSIVE
    if score >= ENHANCED_THRESHOLD:
        return ComplexityTier.ENHANCED
    return ComplexityTier.BASIC


def completeness_level(score: float) -> str:
    """Human-readable completeness band."""
    if score >= 0.9:
        return "excellent"
    if score >= 0.7:
        return "good"
    if score >= 0.5:
        return "adequate"
    if score >= 0.3:
        return "basic"
    return "insufficient"


def employee_size_bracket(count: int) -> int:
    """Employee size bracket, 1 (micro) to 5 (enterprise)."""
    if count < 10:
        return 1
    if count < 50:
        return 2
    if count < 250:
        return 3
    if count < 1000:
        return 4
    return 5


def turnover_size_bracket(turnover: float) -> int:
    """Turnover size bracket, 1 (micro) to 5 (enterprise)."""
    if turnover < 100_000:
        return 1
    if turnover < 1_000_000:
        return 2
    if turnover < 10_000_000:
        return 3
    if turnover < 50_000_000:
        return 4
    return 5


def as_profile(source: Any) -> OrganizationProfile:
    """Accept a profile, an organization, a raw mapping or nothing."""
    if isinstance(source, OrganizationProfile):
        return source
    if isinstance(source, Organization):
        return source.profile
    return OrganizationProfile.from_raw(source)


def _normalize(value: str) -> str:
    return value.strip().lower()


# =============================================================================
# Profile Analyzer
# =============================================================================


class ProfileAnalyzer:
    """
    Analyzes organization profiles for screening.

    Pure and side-effect free: the same profile always yields the same
    score. Missing or malformed profiles score 0.
    """

    def __init__(
        self,
        scheme: CompletenessScheme = CompletenessScheme.FIELD_GROUPS,
        weights: CompletenessWeights | None = None,
    ) -> None:
        """
        Initialize the analyzer.

        Args:
            scheme: Canonical scheme used for tier selection
            weights: Custom category weights
        """
        self.scheme = scheme
        self.weights = weights or CompletenessWeights()

    def analyze(self, profile: Any) -> CompletenessScore:
        """
        Score a profile with the canonical scheme.

        Args:
            profile: OrganizationProfile, Organization, raw mapping or None

        Returns:
            CompletenessScore including the data-quality report
        """
        profile = as_profile(profile)

        if self.scheme == CompletenessScheme.TWO_PHASE:
            result = self.two_phase_score(profile)
        else:
            result = self.field_group_score(profile)
        result.quality = self.assess_data_quality(profile)

        logger.debug(
            "profile_analyzed",
            scheme=result.scheme.value,
            score=result.score,
            tier=result.tier.value,
            quality=result.quality.overall_quality,
        )

        return result

    def field_group_score(self, profile: Any) -> CompletenessScore:
        """Weighted completeness over the four field groups."""
        profile = as_profile(profile)
        groups = {
            "basic_identification": BASIC_FIELDS,
            "operational_details": OPERATIONAL_FIELDS,
            "compliance_context": COMPLIANCE_FIELDS,
            "risk_assessment": RISK_FIELDS,
        }
        category_scores = {name: field_completeness(profile, f) for name, f in groups.items()}
        weights = self.weights.field_groups
        score = round(sum(category_scores[name] * weights[name] for name in groups), 4)

        return CompletenessScore(
            score=score,
            tier=tier_for_score(score),
            scheme=CompletenessScheme.FIELD_GROUPS,
            category_scores=category_scores,
            weights_applied=dict(weights),
            completeness_level=completeness_level(score),
            missing_fields={name: missing_fields(profile, f) for name, f in groups.items()},
        )

    def two_phase_score(self, profile: Any) -> CompletenessScore:
        """Weighted completeness over phase-one, phase-two and quality indicators."""
        profile = as_profile(profile)
        category_scores = {
            "phase_one": field_completeness(profile, BASIC_FIELDS),
            "phase_two": field_completeness(profile, PHASE_TWO_FIELDS),
            "data_quality": self._quality_indicator_score(profile),
        }
        weights = self.weights.two_phase
        score = round(sum(category_scores[k] * weights[k] for k in category_scores), 4)

        return CompletenessScore(
            score=score,
            tier=tier_for_score(score),
            scheme=CompletenessScheme.TWO_PHASE,
            category_scores=category_scores,
            weights_applied=dict(weights),
            completeness_level=completeness_level(score),
            missing_fields={
                "phase_one": missing_fields(profile, BASIC_FIELDS),
                "phase_two": missing_fields(profile, PHASE_TWO_FIELDS),
            },
        )

    def _quality_indicator_score(self, profile: OrganizationProfile) -> float:
        """Share of the four two-phase quality indicators that hold."""
        indicators = [
            profile.total_employees is not None and profile.total_employees > 0,
            profile.annual_turnover is not None and profile.annual_turnover > 0,
            bool(profile.operational_regions),
            len(profile.business_activities or []) > 1,
        ]
        return sum(indicators) / len(indicators)

    # =========================================================================
    # Data Quality
    # =========================================================================

    def assess_data_quality(self, profile: Any) -> DataQualityReport:
        """
        Check completeness, consistency, validity and coherence.

        Findings feed a quality ratio and advisory suggestions only.
        """
        profile = as_profile(profile)

        completeness_ratio = field_completeness(profile, ALL_FIELDS)

        consistency_checks = [
            self._turnover_per_employee_plausible(profile),
            self._size_brackets_agree(profile),
            self._headquarters_in_operational_regions(profile),
        ]
        consistency_ratio = sum(consistency_checks) / len(consistency_checks)

        validity_checks = self._validity_checks(profile)
        validity_ratio = sum(validity_checks.values()) / len(validity_checks)

        coherence_issues = []
        if not self._size_brackets_agree(profile):
            coherence_issues.append(ISSUE_SIZE_MISMATCH)
        if not self._headquarters_in_operational_regions(profile):
            coherence_issues.append(ISSUE_HQ_NOT_OPERATIONAL)
        coherent = not coherence_issues

        issues = []
        if completeness_ratio < 0.7:
            issues.append(ISSUE_INCOMPLETE)
        if consistency_ratio < 0.8:
            issues.append(ISSUE_INCONSISTENT)
        if validity_ratio < 0.8:
            issues.append(ISSUE_INVALID)
        issues.extend(coherence_issues)

        overall = (
            completeness_ratio + consistency_ratio + validity_ratio + (1.0 if coherent else 0.5)
        ) / 4
        confidence = (
            completeness_ratio * 0.3
            + consistency_ratio * 0.3
            + validity_ratio * 0.3
            + (0.1 if coherent else 0.0)
        )

        return DataQualityReport(
            overall_quality=round(overall, 4),
            data_confidence=round(confidence, 4),
            field_completeness_ratio=round(completeness_ratio, 4),
            consistency_ratio=round(consistency_ratio, 4),
            validity_ratio=round(validity_ratio, 4),
            validity_checks=validity_checks,
            coherence_issues=coherence_issues,
            identified_issues=issues,
            improvement_suggestions=[
                IMPROVEMENT_SUGGESTIONS.get(issue, f"Review and address: {issue}")
                for issue in issues
            ],
        )

    def _turnover_per_employee_plausible(self, profile: OrganizationProfile) -> bool:
        employees = profile.total_employees
        turnover = profile.annual_turnover
        if employees is None or turnover is None or employees <= 0:
            return True  # Can't check
        per_employee = turnover / employees
        return 5_000 < per_employee < 500_000

    def _size_brackets_agree(self, profile: OrganizationProfile) -> bool:
        employees = profile.total_employees
        turnover = profile.annual_turnover
        if employees is None or turnover is None:
            return True
        # One bracket of slack
        return abs(employee_size_bracket(employees) - turnover_size_bracket(turnover)) <= 1

    def _headquarters_in_operational_regions(self, profile: OrganizationProfile) -> bool:
        hq = profile.headquarters_region
        regions = profile.operational_regions
        if not has_meaningful_value(hq) or not regions:
            return True
        return _normalize(hq) in {_normalize(r) for r in regions}

    def _validity_checks(self, profile: OrganizationProfile) -> dict[str, bool]:
        sic = profile.primary_sic_code
        return {
            "employee_count": profile.total_employees is None or profile.total_employees >= 0,
            "turnover": profile.annual_turnover is None or profile.annual_turnover >= 0,
            "regions": profile.operational_regions is None or len(profile.operational_regions) > 0,
            "sic_code": sic is None or len(sic.strip()) >= 4,
        }

    # =========================================================================
    # Readiness, Risk Indicators and Recommendations
    # =========================================================================

    def evaluate_screening_readiness(self, profile: Any) -> dict[str, Any]:
        """Readiness for each screening level plus the recommended level."""
        profile = as_profile(profile)

        basic = field_completeness(profile, BASIC_FIELDS)
        basic_ready = basic >= 0.75

        enhanced = field_completeness(profile, ENHANCED_READINESS_FIELDS)
        enhanced_overall = basic * 0.6 + enhanced * 0.4
        enhanced_ready = enhanced_overall >= 0.6 and basic_ready

        categories = {
            "basic": basic,
            "operational": field_completeness(profile, OPERATIONAL_FIELDS),
            "compliance": field_completeness(profile, COMPLIANCE_FIELDS),
            "risk": field_completeness(profile, RISK_FIELDS),
        }
        minimums = {"basic": 0.9, "operational": 0.7, "compliance": 0.5, "risk": 0.3}
        meets_minimums = all(categories[k] >= minimums[k] for k in categories)
        comprehensive_overall = sum(categories.values()) / len(categories)
        comprehensive_ready = meets_minimums and comprehensive_overall >= 0.7

        if comprehensive_ready:
            recommended = ComplexityTier.COMPREHENSIVE.value
        elif enhanced_ready:
            recommended = ComplexityTier.ENHANCED.value
        elif basic_ready:
            recommended = ComplexityTier.BASIC.value
        else:
            recommended = "insufficient_data"

        return {
            "basic_screening": {
                "ready": basic_ready,
                "completeness_score": basic,
                "missing_fields": missing_fields(profile, BASIC_FIELDS),
            },
            "enhanced_screening": {
                "ready": enhanced_ready,
                "overall_readiness": round(enhanced_overall, 4),
                "enhanced_completeness": enhanced,
            },
            "comprehensive_screening": {
                "ready": comprehensive_ready,
                "overall_score": round(comprehensive_overall, 4),
                "category_scores": categories,
                "threshold_compliance": meets_minimums,
            },
            "recommended_level": recommended,
        }

    def identify_risk_indicators(self, profile: Any) -> list[str]:
        """Profile patterns that suggest undocumented compliance exposure."""
        profile = as_profile(profile)
        indicators = []

        if (profile.total_employees or 0) > 250 and not profile.compliance_requirements:
            indicators.append("Large workforce without documented compliance requirements")

        if (profile.annual_turnover or 0) > 10_000_000 and not has_meaningful_value(
            profile.industry_sector
        ):
            indicators.append("High turnover without clear industry classification")

        if has_meaningful_value(profile.headquarters_region) and len(
            profile.operational_regions or []
        ) < 2:
            indicators.append("Potential multi-regional operations not documented")

        return indicators

    def generate_recommendations(self, profile: Any) -> list[str]:
        """Next steps for improving the profile, most important first."""
        profile = as_profile(profile)
        recommendations = []

        missing_basic = missing_fields(profile, BASIC_FIELDS)
        if missing_basic:
            recommendations.append(f"Complete missing basic fields: {', '.join(missing_basic)}")
        else:
            missing_operational = missing_fields(profile, OPERATIONAL_FIELDS)
            if missing_operational:
                recommendations.append(
                    f"Add enhanced profile details: {', '.join(missing_operational)}"
                )

        validity = self._validity_checks(profile)
        if not validity["employee_count"]:
            recommendations.append("Verify and correct employee count data")
        if not validity["turnover"]:
            recommendations.append("Verify and correct annual turnover data")

        return recommendations

    def analyze_organization_profile(self, profile: Any) -> dict[str, Any]:
        """
        Full profile analysis for screening optimization.

        Reports both completeness schemes; `tier` comes from the canonical one.
        """
        profile = as_profile(profile)
        canonical = self.analyze(profile)

        return {
            "score": canonical.score,
            "tier": canonical.tier.value,
            "scheme": canonical.scheme.value,
            "field_groups": asdict(self.field_group_score(profile)),
            "two_phase": asdict(self.two_phase_score(profile)),
            "data_quality": asdict(canonical.quality) if canonical.quality else None,
            "screening_readiness": self.evaluate_screening_readiness(profile),
            "recommendations": self.generate_recommendations(profile),
            "risk_indicators": self.identify_risk_indicators(profile),
        }
