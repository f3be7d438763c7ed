"""
Result Streamer
===============

Progressive re-screening on profile and location changes.

A change is screening-relevant when it touches a field used as a filter
at the organization's current or next-higher tier, or when it moves the
organization to a different tier than the one last screened. A relevant
change invalidates the organization's cache entries (its location keys
included), schedules a re-screen as an asyncio task and pushes the new
result to every subscriber of that organization.

Every push carries a generation number drawn from one counter per
streamer, so generations increase per organization even after its
bookkeeping is evicted. A re-screen overtaken by a newer change is never
pushed, and a subscriber never receives a generation lower than one it
has seen. Per-organization state is kept for at most
`max_tracked_organizations` idle organizations.

Version: 0.1.0
"""

import asyncio
from collections import OrderedDict, defaultdict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from shared.config import ScreeningSettings, settings
from shared.database.kafka import KafkaClient
from shared.logging import get_logger
from shared.models.organization import Organization

from services.applicability.models.screening import TIER_ORDER, ComplexityTier, ScreeningResult
from services.applicability.services.cache import location_key_prefix
from services.applicability.services.matcher import ApplicabilityMatcher
from services.applicability.services.strategy import relevant_fields


logger = get_logger(__name__)


# =============================================================================
# Change Impact Configuration
# =============================================================================

CRITICAL_FIELDS = frozenset({"industry_sector", "headquarters_region", "total_employees"})
ENHANCED_FIELDS = frozenset({"operational_regions", "business_activities", "annual_turnover"})

FIELD_IMPACT_WEIGHTS: dict[str, float] = {
    "industry_sector": 0.8,  # Changes the regulation family
    "headquarters_region": 0.6,
    "total_employees": 0.4,
    "operational_regions": 0.3,
    "business_activities": 0.2,
    "annual_turnover": 0.1,
}
DEFAULT_IMPACT_WEIGHT = 0.05

SCREENING_UPDATED_EVENT = "screening.updated"

IMPACT_RECOMMENDATIONS: dict[str, str] = {
    "high": (
        "Profile changes significantly impact applicability screening. "
        "Full re-screening recommended."
    ),
    "medium": "Profile changes may affect screening accuracy. Enhanced screening recommended.",
    "low": "Minor profile changes. Current screening results remain valid.",
}


# =============================================================================
# Values
# =============================================================================


@dataclass(frozen=True)
class ResultDiff:
    """Difference between two screening results' sample regulations."""

    added: list[str]
    removed: list[str]
    unchanged_count: int
    total_changes: int
    count_change: int
    change_summary: str


@dataclass(frozen=True)
class ScreeningUpdate:
    """One pushed re-screening result."""

    organization_id: str
    generation: int
    result: ScreeningResult
    diff: ResultDiff | None = None

    def to_event(self) -> dict[str, Any]:
        """JSON-ready representation for event sinks and SSE."""
        return {
            "organization_id": self.organization_id,
            "generation": self.generation,
            "result": self.result.model_dump(mode="json"),
            "diff": asdict(self.diff) if self.diff else None,
        }


@dataclass
class ProfileChangeImpact:
    """Assessment of a profile change."""

    organization_id: str
    changed_fields: list[str]
    requires_rescreening: bool
    impact_level: str  # high, medium or low
    estimated_result_change: float  # percent
    recommendation: str
    relevant_fields: list[str] = field(default_factory=list)
    tier_changed: bool = False
    generation: int | None = None


@dataclass
class _OrganizationState:
    latest: int = 0  # last generation issued
    pushed: int = 0  # last generation pushed
    result: ScreeningResult | None = None
    pending: int = 0  # re-screens not yet finished


Publisher = Callable[[ScreeningUpdate], Awaitable[None]]


def calculate_result_diff(
    previous: ScreeningResult | None,
    new: ScreeningResult,
) -> ResultDiff:
    """Compare the sample regulations of two results by law id."""
    old_ids = set(previous.law_ids) if previous else set()
    new_ids = set(new.law_ids)

    added = sorted(new_ids - old_ids)
    removed = sorted(old_ids - new_ids)
    count_change = new.applicable_law_count - (previous.applicable_law_count if previous else 0)

    return ResultDiff(
        added=added,
        removed=removed,
        unchanged_count=len(old_ids & new_ids),
        total_changes=len(added) + len(removed),
        count_change=count_change,
        change_summary=f"{len(added)} added, {len(removed)} removed, {count_change:+d} applicable",
    )


async def kafka_publisher(update: ScreeningUpdate) -> None:
    """Publish a screening update to the configured Kafka topic."""
    await KafkaClient.publish(
        settings.screening.events_topic,
        SCREENING_UPDATED_EVENT,
        update.to_event(),
        key=update.organization_id,
    )


# =============================================================================
# Subscription
# =============================================================================


class Subscription:
    """
    One subscriber's stream of updates for one organization.

    Iterate with `async for`. The queue is bounded; when it is full the
    oldest pending update is dropped, since a newer generation supersedes it.
    """

    _CLOSED = object()

    def __init__(self, organization_id: str, maxsize: int) -> None:
        self.organization_id = organization_id
        self.last_generation = 0
        self.dropped = 0
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)

    def offer(self, update: ScreeningUpdate) -> bool:
        """Queue an update unless closed or not newer than the last one."""
        if self.closed or update.generation <= self.last_generation:
            return False
        self._make_room()
        self._queue.put_nowait(update)
        self.last_generation = update.generation
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._make_room()
        self._queue.put_nowait(self._CLOSED)

    def _make_room(self) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ScreeningUpdate:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


# =============================================================================
# Streamer
# =============================================================================


class ResultStreamer:
    """
    Reacts to profile and location changes and streams refined results.

    Notification is fire-and-forget: change handlers return once the cache
    is invalidated and the re-screen is scheduled. Neither subscriber nor
    publisher failures reach the caller.
    """

    def __init__(
        self,
        matcher: ApplicabilityMatcher,
        publisher: Publisher | None = None,
        screening: ScreeningSettings | None = None,
    ) -> None:
        self.matcher = matcher
        self.publisher = publisher
        self.screening = screening or settings.screening

        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)
        self._states: OrderedDict[str, _OrganizationState] = OrderedDict()
        self._issued = 0
        self._tasks: set[asyncio.Task[None]] = set()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, organization_id: str) -> Subscription:
        """Register interest in one organization's results."""
        subscription = Subscription(organization_id, self.screening.subscriber_queue_size)
        self._subscribers[organization_id].add(subscription)
        logger.debug("subscriber_added", organization_id=organization_id)
        return subscription

    def unsubscribe(self, organization_id: str, subscription: Subscription) -> None:
        """Stop delivering to a subscription and end its iteration."""
        subscribers = self._subscribers.get(organization_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[organization_id]
                self._trim()
        subscription.close()
        logger.debug("subscriber_removed", organization_id=organization_id)

    def subscriber_count(self, organization_id: str) -> int:
        return len(self._subscribers.get(organization_id, ()))

    def generation(self, organization_id: str) -> int:
        """Latest generation issued for a tracked organization, 0 if none."""
        state = self._states.get(organization_id)
        return state.latest if state else 0

    def tracked_organizations(self) -> int:
        return len(self._states)

    def _state(self, organization_id: str) -> _OrganizationState:
        state = self._states.get(organization_id)
        if state is None:
            state = self._states[organization_id] = _OrganizationState()
        self._states.move_to_end(organization_id)
        return state

    def _trim(self) -> None:
        """Evict least recently changed idle organizations over the cap."""
        excess = len(self._states) - self.screening.max_tracked_organizations
        if excess <= 0:
            return
        idle = [
            org_id
            for org_id, state in self._states.items()
            if not state.pending and org_id not in self._subscribers
        ]
        for org_id in idle[:excess]:
            del self._states[org_id]

    # =========================================================================
    # Change Handling
    # =========================================================================

    def assess_change(
        self,
        organization: Organization,
        changed_fields: Iterable[str],
        previous_tier: ComplexityTier | None = None,
    ) -> ProfileChangeImpact:
        """
        Decide whether a profile change warrants re-screening.

        Args:
            organization: Organization with its updated profile
            changed_fields: Names of the profile fields that changed
            previous_tier: Tier of the last known screening, if any
        """
        changed = sorted(set(changed_fields))
        tier = self.matcher.build_strategy(organization).tier
        next_tier = tier.next_tier()

        relevant = set(relevant_fields(tier))
        if next_tier is not None:
            relevant |= relevant_fields(next_tier)
        hits = relevant.intersection(changed)
        tier_changed = bool(changed) and previous_tier is not None and previous_tier != tier

        if CRITICAL_FIELDS.intersection(changed):
            impact_level = "high"
        elif ENHANCED_FIELDS.intersection(changed):
            impact_level = "medium"
        else:
            impact_level = "low"

        impact = min(1.0, sum(FIELD_IMPACT_WEIGHTS.get(f, DEFAULT_IMPACT_WEIGHT) for f in changed))

        return ProfileChangeImpact(
            organization_id=organization.id,
            changed_fields=changed,
            requires_rescreening=bool(hits) or tier_changed,
            impact_level=impact_level,
            estimated_result_change=round(impact * 100, 1),
            recommendation=IMPACT_RECOMMENDATIONS[impact_level],
            relevant_fields=sorted(hits),
            tier_changed=tier_changed,
        )

    async def last_screened_tier(self, organization: Organization) -> ComplexityTier | None:
        """
        Tier of the organization's last known screening.

        A cached result at the current tier wins; otherwise the highest
        other cached tier, then the last pushed result.
        """
        current = self.matcher.build_strategy(organization).tier
        if await self.matcher.cache.peek(organization.id, current) is not None:
            return current
        for tier in reversed(TIER_ORDER):
            if await self.matcher.cache.peek(organization.id, tier) is not None:
                return tier
        state = self._states.get(organization.id)
        if state is not None and state.result is not None:
            return state.result.tier
        return None

    async def on_profile_changed(
        self,
        organization: Organization,
        changed_fields: Iterable[str],
        wait: bool = False,
    ) -> ProfileChangeImpact:
        """
        Handle a profile update.

        Args:
            organization: Organization with its updated profile
            changed_fields: Names of the profile fields that changed
            wait: Await the re-screen instead of returning once scheduled

        Returns:
            ProfileChangeImpact, with the generation when a re-screen was scheduled
        """
        impact = self.assess_change(
            organization,
            changed_fields,
            previous_tier=await self.last_screened_tier(organization),
        )

        if not impact.requires_rescreening:
            logger.debug(
                "profile_change_ignored",
                organization_id=organization.id,
                changed_fields=impact.changed_fields,
            )
            return impact

        generation = await self._invalidate_and_schedule(organization, wait)

        logger.info(
            "profile_change_rescreening",
            organization_id=organization.id,
            changed_fields=impact.changed_fields,
            impact_level=impact.impact_level,
            tier_changed=impact.tier_changed,
            generation=generation,
        )

        return replace(impact, generation=generation)

    async def on_locations_changed(self, organization: Organization, wait: bool = False) -> int:
        """
        Handle a change to the location set. Always re-screens.

        Returns:
            Generation of the scheduled re-screen
        """
        generation = await self._invalidate_and_schedule(organization, wait)
        logger.info(
            "locations_change_rescreening",
            organization_id=organization.id,
            locations=len(organization.locations),
            generation=generation,
        )
        return generation

    async def _invalidate_and_schedule(self, organization: Organization, wait: bool) -> int:
        await self.matcher.cache.invalidate(organization.id)
        # Prefix match also drops keys of locations no longer in the set
        await self.matcher.cache.invalidate_prefix(location_key_prefix(organization.id))

        self._issued += 1
        generation = self._issued
        state = self._state(organization.id)
        state.latest = generation
        state.pending += 1

        task = asyncio.create_task(self._rescreen(organization, generation, state))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _: self._rescreen_finished(state))

        if wait:
            await asyncio.shield(task)
        return generation

    def _rescreen_finished(self, state: _OrganizationState) -> None:
        state.pending -= 1
        self._trim()

    async def _rescreen(
        self,
        organization: Organization,
        generation: int,
        state: _OrganizationState,
    ) -> None:
        org_id = organization.id
        try:
            result = await self.matcher.screen(organization)
        except Exception:
            logger.exception("rescreening_failed", organization_id=org_id, generation=generation)
            return

        if generation < state.latest or generation <= state.pushed:
            logger.debug("rescreening_superseded", organization_id=org_id, generation=generation)
            return

        update = ScreeningUpdate(
            organization_id=org_id,
            generation=generation,
            result=result,
            diff=calculate_result_diff(state.result, result),
        )
        state.pushed = generation
        state.result = result

        delivered = sum(1 for sub in list(self._subscribers.get(org_id, ())) if sub.offer(update))
        logger.info(
            "screening_update_pushed",
            organization_id=org_id,
            generation=generation,
            subscribers=delivered,
            degraded=result.degraded,
        )

        if self.publisher is not None:
            try:
                await self.publisher(update)
            except Exception as e:
                logger.warning(
                    "screening_event_publish_failed",
                    organization_id=org_id,
                    generation=generation,
                    error=str(e),
                )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def drain(self) -> None:
        """Wait for every scheduled re-screen to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending re-screens and end every subscription."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

        for organization_id, subscribers in list(self._subscribers.items()):
            for subscription in list(subscribers):
                self.unsubscribe(organization_id, subscription)
