"""
Result Streamer Tests
=====================

Tests for change relevance, invalidation, generation ordering and
subscriber delivery.

Version: 0.1.0
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from shared.config import ScreeningSettings
from shared.database.kafka import KafkaClient, build_envelope
from shared.models.organization import Organization

from services.applicability.models.screening import (
    ComplexityTier,
    ConfidenceLevel,
    ScreeningResult,
)
from services.applicability.services.cache import location_cache_key
from services.applicability.services.matcher import ApplicabilityMatcher
from services.applicability.services.store import InMemoryRegulationStore
from services.applicability.services.streamer import (
    ResultStreamer,
    ScreeningUpdate,
    Subscription,
    calculate_result_diff,
    kafka_publisher,
)


def make_update(generation: int, organization_id: str = "org-1") -> ScreeningUpdate:
    return ScreeningUpdate(
        organization_id=organization_id,
        generation=generation,
        result=ScreeningResult.degraded_for(organization_id, ComplexityTier.BASIC, "test"),
    )


async def next_update(subscription: Subscription) -> ScreeningUpdate:
    return await asyncio.wait_for(anext(subscription), 1)


@pytest.fixture
def near_enhanced_profile(basic_profile: dict[str, Any]) -> dict[str, Any]:
    """Basic fields plus a SIC code, scoring 0.46, just under enhanced."""
    return {**basic_profile, "primary_sic_code": "41201"}


# =============================================================================
# Change Relevance
# =============================================================================


class TestChangeAssessment:
    """Tests for deciding whether a change warrants re-screening."""

    @pytest.mark.parametrize(
        ("fields", "level", "percent"),
        [
            (["industry_sector"], "high", 80.0),
            (["operational_regions"], "medium", 30.0),
            (["annual_turnover"], "medium", 10.0),
            (["special_circumstances"], "low", 5.0),
            (["industry_sector", "headquarters_region"], "high", 100.0),
        ],
    )
    def test_impact_levels(
        self,
        streamer: ResultStreamer,
        construction_scotland: Organization,
        fields: list[str],
        level: str,
        percent: float,
    ) -> None:
        impact = streamer.assess_change(construction_scotland, fields)

        assert impact.impact_level == level
        assert impact.estimated_result_change == percent

    def test_next_tier_fields_are_relevant(
        self,
        streamer: ResultStreamer,
        construction_scotland: Organization,
    ) -> None:
        """A basic-tier organization cares about enhanced filters, not comprehensive ones."""
        operational = streamer.assess_change(construction_scotland, ["operational_regions"])
        compliance = streamer.assess_change(construction_scotland, ["compliance_requirements"])

        assert operational.requires_rescreening
        assert operational.relevant_fields == ["operational_regions"]
        assert not compliance.requires_rescreening

    def test_comprehensive_fields_relevant_from_enhanced(
        self,
        streamer: ResultStreamer,
        enhanced_profile: dict[str, Any],
    ) -> None:
        organization = Organization(id="org-enh", profile=enhanced_profile)

        impact = streamer.assess_change(organization, ["compliance_requirements"])

        assert impact.requires_rescreening

    def test_free_text_is_never_relevant(
        self,
        streamer: ResultStreamer,
        full_profile: dict[str, Any],
    ) -> None:
        organization = Organization(id="org-full", profile=full_profile)

        impact = streamer.assess_change(organization, ["special_circumstances"])

        assert not impact.requires_rescreening
        assert impact.recommendation.startswith("Minor profile changes")

    def test_tier_change_makes_any_field_relevant(
        self,
        streamer: ResultStreamer,
        near_enhanced_profile: dict[str, Any],
    ) -> None:
        """A registration number alone lifts the score across the enhanced threshold."""
        organization = Organization(
            id="org-near",
            profile={**near_enhanced_profile, "registration_number": "SC123456"},
        )

        unknown = streamer.assess_change(organization, ["registration_number"])
        crossed = streamer.assess_change(
            organization, ["registration_number"], previous_tier=ComplexityTier.BASIC
        )

        assert not unknown.requires_rescreening
        assert crossed.requires_rescreening
        assert crossed.tier_changed
        assert crossed.relevant_fields == []


# =============================================================================
# Profile Changes
# =============================================================================


class TestProfileChanges:
    """Tests for invalidation and pushed re-screens."""

    @pytest.mark.asyncio
    async def test_irrelevant_change_neither_invalidates_nor_pushes(
        self,
        streamer: ResultStreamer,
        matcher: ApplicabilityMatcher,
        construction_scotland: Organization,
    ) -> None:
        await matcher.screen(construction_scotland)
        subscription = streamer.subscribe(construction_scotland.id)

        impact = await streamer.on_profile_changed(
            construction_scotland, ["special_circumstances"], wait=True
        )

        assert impact.generation is None
        assert streamer.generation(construction_scotland.id) == 0
        assert subscription.pending() == 0
        assert await matcher.cache.peek(construction_scotland.id, ComplexityTier.BASIC) is not None

    @pytest.mark.asyncio
    async def test_change_crossing_a_tier_boundary_rescreens(
        self,
        streamer: ResultStreamer,
        matcher: ApplicabilityMatcher,
        near_enhanced_profile: dict[str, Any],
    ) -> None:
        before = Organization(id="org-near", profile=near_enhanced_profile)
        after = Organization(
            id="org-near",
            profile={**near_enhanced_profile, "registration_number": "SC123456"},
        )
        assert (await matcher.screen(before)).tier == ComplexityTier.BASIC
        subscription = streamer.subscribe("org-near")

        impact = await streamer.on_profile_changed(after, ["registration_number"], wait=True)

        assert impact.tier_changed
        assert impact.generation == 1
        assert (await next_update(subscription)).result.tier == ComplexityTier.ENHANCED
        assert await matcher.cache.peek("org-near", ComplexityTier.BASIC) is None

    @pytest.mark.asyncio
    async def test_relevant_change_invalidates_and_pushes(
        self,
        streamer: ResultStreamer,
        matcher: ApplicabilityMatcher,
        store: InMemoryRegulationStore,
        construction_scotland: Organization,
    ) -> None:
        first = await matcher.screen(construction_scotland)
        subscription = streamer.subscribe(construction_scotland.id)

        impact = await streamer.on_profile_changed(
            construction_scotland, ["operational_regions"], wait=True
        )
        update = await next_update(subscription)

        assert impact.generation == 1
        assert update.generation == 1
        assert update.organization_id == construction_scotland.id
        assert update.result.applicable_law_count == 3
        assert update.result is not first
        assert store.calls["count"] == 2

    @pytest.mark.asyncio
    async def test_returns_before_rescreen_completes(
        self,
        streamer: ResultStreamer,
        store: InMemoryRegulationStore,
        construction_scotland: Organization,
    ) -> None:
        store.delay = 0.05
        subscription = streamer.subscribe(construction_scotland.id)

        impact = await streamer.on_profile_changed(construction_scotland, ["industry_sector"])

        assert impact.generation == 1
        assert subscription.pending() == 0

        update = await next_update(subscription)
        assert update.generation == 1

    @pytest.mark.asyncio
    async def test_generations_increase_per_organization(
        self,
        streamer: ResultStreamer,
        construction_scotland: Organization,
    ) -> None:
        subscription = streamer.subscribe(construction_scotland.id)

        for _ in range(3):
            await streamer.on_profile_changed(construction_scotland, ["industry_sector"], wait=True)

        received = [(await next_update(subscription)).generation for _ in range(3)]

        assert received == [1, 2, 3]
        assert streamer.generation(construction_scotland.id) == 3
        assert streamer.generation("org-other") == 0

    @pytest.mark.asyncio
    async def test_superseded_rescreen_is_not_pushed(
        self,
        streamer: ResultStreamer,
        store: InMemoryRegulationStore,
        construction_scotland: Organization,
    ) -> None:
        """Two rapid changes deliver only the newer generation."""
        store.delay = 0.02
        subscription = streamer.subscribe(construction_scotland.id)

        await streamer.on_profile_changed(construction_scotland, ["industry_sector"])
        await streamer.on_profile_changed(construction_scotland, ["headquarters_region"])
        await streamer.drain()

        assert subscription.pending() == 1
        assert (await next_update(subscription)).generation == 2

    @pytest.mark.asyncio
    async def test_pushed_updates_carry_diff(
        self,
        streamer: ResultStreamer,
        construction_scotland: Organization,
        enhanced_profile: dict[str, Any],
    ) -> None:
        subscription = streamer.subscribe(construction_scotland.id)
        await streamer.on_profile_changed(construction_scotland, ["industry_sector"], wait=True)

        enhanced = Organization(id=construction_scotland.id, profile=enhanced_profile)
        await streamer.on_profile_changed(enhanced, ["business_activities"], wait=True)

        first = await next_update(subscription)
        second = await next_update(subscription)

        assert first.diff is not None
        assert first.diff.added == ["scot-1", "scot-2", "scot-3"]
        assert second.result.tier == ComplexityTier.ENHANCED
        assert second.diff is not None
        assert second.diff.removed == ["scot-1"]
        assert second.diff.count_change == -1

    @pytest.mark.asyncio
    async def test_only_subscribers_of_the_organization_receive(
        self,
        streamer: ResultStreamer,
        construction_scotland: Organization,
    ) -> None:
        mine = streamer.subscribe(construction_scotland.id)
        other = streamer.subscribe("org-other")

        await streamer.on_profile_changed(construction_scotland, ["industry_sector"], wait=True)

        assert mine.pending() == 1
        assert other.pending() == 0

    @pytest.mark.asyncio
    async def test_rescreen_failure_is_contained(
        self,
        streamer: ResultStreamer,
        matcher: ApplicabilityMatcher,
        construction_scotland: Organization,
    ) -> None:
        subscription = streamer.subscribe(construction_scotland.id)

        with patch.object(matcher, "screen", AsyncMock(side_effect=RuntimeError("boom"))):
            impact = await streamer.on_profile_changed(
                construction_scotland, ["industry_sector"], wait=True
            )

        assert impact.generation == 1
        assert subscription.pending() == 0


# =============================================================================
# Location Changes
# =============================================================================


class TestLocationChanges:
    """Tests for location-set changes."""

    @pytest.mark.asyncio
    async def test_location_change_always_rescreens(
        self,
        streamer: ResultStreamer,
        matcher: ApplicabilityMatcher,
        construction_scotland: Organization,
    ) -> None:
        location_key = location_cache_key(construction_scotland.id, "loc-1")
        await matcher.screen(construction_scotland, cache_key=location_key)
        subscription = streamer.subscribe(construction_scotland.id)

        generation = await streamer.on_locations_changed(construction_scotland, wait=True)

        assert generation == 1
        assert (await next_update(subscription)).generation == 1
        assert await matcher.cache.peek(location_key, ComplexityTier.BASIC) is None

    @pytest.mark.asyncio
    async def test_removed_location_keys_are_invalidated(
        self,
        streamer: ResultStreamer,
        matcher: ApplicabilityMatcher,
        construction_scotland: Organization,
    ) -> None:
        """loc-gone is no longer in the location set but its entry still goes."""
        removed_key = location_cache_key(construction_scotland.id, "loc-gone")
        await matcher.screen(construction_scotland, cache_key=removed_key)

        await streamer.on_locations_changed(construction_scotland, wait=True)

        assert await matcher.cache.peek(removed_key, ComplexityTier.BASIC) is None


# =============================================================================
# Publishing
# =============================================================================


class TestPublishing:
    """Tests for the optional event publisher."""

    @pytest.mark.asyncio
    async def test_publisher_receives_update(
        self,
        matcher: ApplicabilityMatcher,
        screening_settings: ScreeningSettings,
        construction_scotland: Organization,
    ) -> None:
        publisher = AsyncMock()
        streamer = ResultStreamer(matcher, publisher=publisher, screening=screening_settings)

        await streamer.on_profile_changed(construction_scotland, ["industry_sector"], wait=True)

        publisher.assert_awaited_once()
        update = publisher.await_args.args[0]
        assert update.generation == 1
        assert update.to_event()["result"]["tier"] == "basic"

    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_reach_subscribers_or_caller(
        self,
        matcher: ApplicabilityMatcher,
        screening_settings: ScreeningSettings,
        construction_scotland: Organization,
    ) -> None:
        publisher = AsyncMock(side_effect=RuntimeError("kafka down"))
        streamer = ResultStreamer(matcher, publisher=publisher, screening=screening_settings)
        subscription = streamer.subscribe(construction_scotland.id)

        impact = await streamer.on_profile_changed(
            construction_scotland, ["industry_sector"], wait=True
        )

        assert impact.generation == 1
        assert (await next_update(subscription)).generation == 1

    @pytest.mark.asyncio
    async def test_kafka_publisher_keys_by_organization(self) -> None:
        update = make_update(3)

        with patch.object(KafkaClient, "publish", AsyncMock()) as publish:
            await kafka_publisher(update)

        publish.assert_awaited_once_with(
            "screening.results",
            "screening.updated",
            update.to_event(),
            key="org-1",
        )

    def test_event_envelope(self) -> None:
        envelope = build_envelope("screening.updated", {"generation": 1})

        assert envelope["event_type"] == "screening.updated"
        assert envelope["source"] == "regscreen-applicability"
        assert envelope["data"] == {"generation": 1}


# =============================================================================
# Subscriptions
# =============================================================================


class TestSubscription:
    """Tests for the bounded, ordered subscriber queue."""

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self) -> None:
        subscription = Subscription("org-1", maxsize=2)

        for generation in (1, 2, 3):
            assert subscription.offer(make_update(generation))

        assert subscription.pending() == 2
        assert subscription.dropped == 1
        assert (await next_update(subscription)).generation == 2
        assert (await next_update(subscription)).generation == 3

    def test_stale_generation_is_rejected(self) -> None:
        subscription = Subscription("org-1", maxsize=4)

        assert subscription.offer(make_update(2))
        assert not subscription.offer(make_update(1))
        assert not subscription.offer(make_update(2))
        assert subscription.pending() == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_ends_iteration(self, streamer: ResultStreamer) -> None:
        subscription = streamer.subscribe("org-1")
        streamer.unsubscribe("org-1", subscription)

        received = [update async for update in subscription]

        assert received == []
        assert streamer.subscriber_count("org-1") == 0
        assert not subscription.offer(make_update(1))

    @pytest.mark.asyncio
    async def test_close_ends_every_subscription(
        self,
        streamer: ResultStreamer,
        construction_scotland: Organization,
    ) -> None:
        subscription = streamer.subscribe(construction_scotland.id)
        await streamer.on_profile_changed(construction_scotland, ["industry_sector"])

        await streamer.close()

        received = [update async for update in subscription]
        assert received == []
        assert streamer.subscriber_count(construction_scotland.id) == 0


# =============================================================================
# Result Diff
# =============================================================================


class TestResultDiff:
    """Tests for comparing consecutive results."""

    def test_diff_by_law_id(self, make_law: Any) -> None:
        previous = ScreeningResult(
            organization_id="org-1",
            tier=ComplexityTier.BASIC,
            applicable_law_count=2,
            sample_regulations=[make_law("a"), make_law("b")],
            screening_method="basic_applicability",
            confidence_level=ConfidenceLevel.BASIC,
        )
        new = previous.model_copy(
            update={
                "applicable_law_count": 5,
                "sample_regulations": [make_law("b"), make_law("c")],
            }
        )

        diff = calculate_result_diff(previous, new)

        assert diff.added == ["c"]
        assert diff.removed == ["a"]
        assert diff.unchanged_count == 1
        assert diff.total_changes == 2
        assert diff.change_summary == "1 added, 1 removed, +3 applicable"

    def test_first_result_is_all_additions(self, make_law: Any) -> None:
        new = ScreeningResult(
            organization_id="org-1",
            tier=ComplexityTier.BASIC,
            applicable_law_count=1,
            sample_regulations=[make_law("a")],
            screening_method="basic_applicability",
            confidence_level=ConfidenceLevel.BASIC,
        )

        diff = calculate_result_diff(None, new)

        assert diff.added == ["a"]
        assert diff.removed == []
        assert diff.count_change == 1


# =============================================================================
# Bookkeeping
# =============================================================================


class TestBookkeeping:
    """Tests that per-organization state stays bounded."""

    @pytest.mark.asyncio
    async def test_idle_organizations_are_evicted(
        self,
        matcher: ApplicabilityMatcher,
        construction_scotland: Organization,
    ) -> None:
        streamer = ResultStreamer(
            matcher, screening=ScreeningSettings(max_tracked_organizations=2)
        )
        watched = streamer.subscribe("org-0")

        for i in range(5):
            organization = construction_scotland.model_copy(update={"id": f"org-{i}"})
            await streamer.on_profile_changed(organization, ["industry_sector"], wait=True)

        assert streamer.tracked_organizations() == 2
        assert matcher.cache.tracked_keys() == 0
        # Subscribed organizations are never evicted
        assert streamer.generation("org-0") == 1
        assert (await next_update(watched)).generation == 1
        assert streamer.generation("org-4") == 5
        assert streamer.generation("org-1") == 0

    @pytest.mark.asyncio
    async def test_generations_keep_increasing_after_eviction(
        self,
        matcher: ApplicabilityMatcher,
        construction_scotland: Organization,
    ) -> None:
        streamer = ResultStreamer(
            matcher, screening=ScreeningSettings(max_tracked_organizations=1)
        )
        other = construction_scotland.model_copy(update={"id": "org-other"})

        first = await streamer.on_locations_changed(construction_scotland, wait=True)
        await streamer.on_locations_changed(other, wait=True)
        assert streamer.generation(construction_scotland.id) == 0

        subscription = streamer.subscribe(construction_scotland.id)
        second = await streamer.on_locations_changed(construction_scotland, wait=True)

        assert second > first
        assert (await next_update(subscription)).generation == second
