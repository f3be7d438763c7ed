"""
Model Tests
===========

Tests for organization, location, law and screening result models.

Version: 0.1.0
"""

import pytest
from pydantic import ValidationError

from shared.models.organization import (
    Location,
    OperationalStatus,
    Organization,
    OrganizationProfile,
)
from shared.models.regulation import LawRecord

from services.applicability.models.screening import (
    AggregatedLawSet,
    AggregationMode,
    ComplexityTier,
    ConfidenceLevel,
    ScreeningResult,
)


def location(location_id: str, **kwargs) -> dict:
    return {
        "id": location_id,
        "organization_id": "org-1",
        "location_name": f"Site {location_id}",
        "geographic_region": "england",
        **kwargs,
    }


class TestOrganizationProfile:
    """Tests for tolerant profile parsing."""

    def test_profile_is_immutable(self) -> None:
        profile = OrganizationProfile(industry_sector="construction")

        with pytest.raises(ValidationError):
            profile.industry_sector = "health"  # type: ignore[misc]

    def test_from_raw_ignores_unknown_keys(self) -> None:
        profile = OrganizationProfile.from_raw({"industry_sector": "construction", "colour": "red"})

        assert profile.industry_sector == "construction"

    @pytest.mark.parametrize("raw", [None, [], "profile", 3])
    def test_from_raw_non_mapping_is_empty(self, raw) -> None:
        assert OrganizationProfile.from_raw(raw) == OrganizationProfile()

    def test_wrong_types_become_absent(self) -> None:
        profile = OrganizationProfile.from_raw(
            {"total_employees": {"n": 3}, "business_activities": 7, "headquarters_region": "wales"}
        )

        assert profile.total_employees is None
        assert profile.business_activities is None
        assert profile.headquarters_region == "wales"


class TestOrganization:
    """Tests for organizations and their locations."""

    def test_raw_profile_is_coerced(self) -> None:
        organization = Organization(id="org-1", profile={"industry_sector": "construction"})

        assert isinstance(organization.profile, OrganizationProfile)
        assert organization.profile.industry_sector == "construction"

    def test_missing_profile_is_empty(self) -> None:
        assert Organization(id="org-1", profile=None).profile == OrganizationProfile()

    def test_id_is_required(self) -> None:
        with pytest.raises(ValidationError):
            Organization(id="")

    def test_single_primary_location(self) -> None:
        with pytest.raises(ValidationError, match="Only one primary location"):
            Organization(
                id="org-1",
                locations=[
                    location("a", is_primary_location=True),
                    location("b", is_primary_location=True),
                ],
            )

    def test_primary_and_active_locations(self) -> None:
        organization = Organization(
            id="org-1",
            locations=[
                location("a", is_primary_location=True),
                location("b", operational_status="seasonal"),
                location("c"),
            ],
        )

        assert organization.primary_location().id == "a"
        assert [loc.id for loc in organization.active_locations()] == ["a", "c"]

    def test_location_counts_are_non_negative(self) -> None:
        with pytest.raises(ValidationError):
            Location(**location("a", employee_count=-1))

    @pytest.mark.parametrize(
        ("status", "active"),
        [
            (OperationalStatus.ACTIVE, True),
            (OperationalStatus.INACTIVE, False),
            (OperationalStatus.CLOSING, False),
            (OperationalStatus.UNDER_CONSTRUCTION, False),
        ],
    )
    def test_location_is_active(self, status: OperationalStatus, active: bool) -> None:
        assert Location(**location("a", operational_status=status)).is_active is active


class TestLawRecord:
    """Tests for the duty-creating marker."""

    @pytest.mark.parametrize(
        ("functions", "duty_creating"),
        [
            (["Making"], True),
            (["Amending", "Making"], True),
            (["Amending"], False),
            ([], False),
        ],
    )
    def test_is_duty_creating(self, functions: list[str], duty_creating: bool) -> None:
        record = LawRecord(id="law-1", name="Law", functions=functions)

        assert record.is_duty_creating is duty_creating


class TestScreeningModels:
    """Tests for screening results and tiers."""

    def test_tier_order(self) -> None:
        assert ComplexityTier.BASIC.next_tier() == ComplexityTier.ENHANCED
        assert ComplexityTier.COMPREHENSIVE.next_tier() is None
        assert ComplexityTier.COMPREHENSIVE.at_or_below() == [
            ComplexityTier.COMPREHENSIVE,
            ComplexityTier.ENHANCED,
            ComplexityTier.BASIC,
        ]

    def test_degraded_result(self) -> None:
        result = ScreeningResult.degraded_for("org-1", ComplexityTier.ENHANCED, "store_timeout")

        assert result.degraded
        assert result.applicable_law_count == 0
        assert result.confidence_level == ConfidenceLevel.NONE
        assert result.tier == ComplexityTier.ENHANCED

    def test_result_is_frozen(self) -> None:
        result = ScreeningResult.degraded_for("org-1", ComplexityTier.BASIC, "timeout")

        with pytest.raises(ValidationError):
            result.applicable_law_count = 5  # type: ignore[misc]

    def test_negative_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScreeningResult(
                organization_id="org-1",
                tier=ComplexityTier.BASIC,
                applicable_law_count=-1,
                screening_method="basic_applicability",
                confidence_level=ConfidenceLevel.BASIC,
            )

    def test_result_json_round_trip_keeps_timestamp(self) -> None:
        result = ScreeningResult(
            organization_id="org-1",
            tier=ComplexityTier.BASIC,
            applicable_law_count=1,
            sample_regulations=[LawRecord(id="law-1", name="Law", functions=["Making"])],
            screening_method="basic_applicability",
            confidence_level=ConfidenceLevel.BASIC,
        )

        restored = ScreeningResult.model_validate_json(result.model_dump_json())

        assert restored == result
        assert restored.law_ids == ["law-1"]

    def test_empty_aggregate(self) -> None:
        aggregate = AggregatedLawSet(organization_id="org-1", mode=AggregationMode.NO_LOCATIONS)

        assert aggregate.count == 0
        assert aggregate.law_ids == []
