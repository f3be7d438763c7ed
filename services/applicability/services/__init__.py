"""
Applicability Screening Services
================================

Business logic of the screening engine, leaf first.

Services:
- ProfileAnalyzer: profile completeness and data quality
- QueryStrategyBuilder: tier selection and store query parameters
- RegulationStore: duty-creating view of the regulation corpus
- ScreeningCache: single-flight, TTL-bounded result cache
- ApplicabilityMatcher: screening entry point
- ResultStreamer: re-screening on profile change, pushed to subscribers
- LocationAggregator: deduplicated laws across locations

Version: 0.1.0
"""

from services.applicability.services.cache import (
    CacheStats,
    InMemoryScreeningCache,
    RedisScreeningCache,
    ScreeningCache,
    create_cache,
    location_cache_key,
    location_key_prefix,
)
from services.applicability.services.locations import (
    LocationAggregator,
    organization_wide_obligations,
)
from services.applicability.services.matcher import ApplicabilityMatcher, ApplicableLaws
from services.applicability.services.profile import (
    CompletenessScore,
    DataQualityReport,
    ProfileAnalyzer,
    tier_for_score,
)
from services.applicability.services.store import (
    InMemoryRegulationStore,
    PostgresRegulationStore,
    RegulationStore,
    RegulationStoreError,
    RegulationStoreTimeout,
)
from services.applicability.services.strategy import (
    QueryParams,
    QueryStrategy,
    QueryStrategyBuilder,
    relevant_fields,
)
from services.applicability.services.streamer import (
    ProfileChangeImpact,
    ResultDiff,
    ResultStreamer,
    ScreeningUpdate,
    Subscription,
    calculate_result_diff,
    kafka_publisher,
)


__all__ = [
    # Profile
    "ProfileAnalyzer",
    "CompletenessScore",
    "DataQualityReport",
    "tier_for_score",
    # Strategy
    "QueryStrategyBuilder",
    "QueryStrategy",
    "QueryParams",
    "relevant_fields",
    # Store
    "RegulationStore",
    "RegulationStoreError",
    "RegulationStoreTimeout",
    "InMemoryRegulationStore",
    "PostgresRegulationStore",
    # Cache
    "ScreeningCache",
    "InMemoryScreeningCache",
    "RedisScreeningCache",
    "CacheStats",
    "create_cache",
    "location_cache_key",
    "location_key_prefix",
    # Matcher
    "ApplicabilityMatcher",
    "ApplicableLaws",
    # Streamer
    "ResultStreamer",
    "Subscription",
    "ScreeningUpdate",
    "ProfileChangeImpact",
    "ResultDiff",
    "calculate_result_diff",
    "kafka_publisher",
    # Locations
    "LocationAggregator",
    "organization_wide_obligations",
]
