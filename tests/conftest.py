"""
Test Configuration
==================

Pytest fixtures for RegScreen tests.
"""

import os
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["SCREENING_CACHE_BACKEND"] = "memory"
os.environ["SCREENING_PUBLISH_EVENTS"] = "false"

from shared.config import ScreeningSettings  # noqa: E402
from shared.models.organization import Organization  # noqa: E402
from shared.models.regulation import IN_FORCE_STATUS, LawRecord  # noqa: E402

from services.applicability.services.cache import InMemoryScreeningCache  # noqa: E402
from services.applicability.services.locations import LocationAggregator  # noqa: E402
from services.applicability.services.matcher import ApplicabilityMatcher  # noqa: E402
from services.applicability.services.store import InMemoryRegulationStore  # noqa: E402
from services.applicability.services.streamer import ResultStreamer  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


# =============================================================================
# Corpus
# =============================================================================


@pytest.fixture
def make_law() -> Callable[..., LawRecord]:
    """Factory for law records with duty-creating, in-force defaults."""

    def _make(
        law_id: str,
        classification: str | None = "CONSTRUCTION",
        geo_extent: str = "Scotland",
        year: int = 2020,
        functions: tuple[str, ...] = ("Making",),
        duty_holders: tuple[str, ...] = (),
        status: str = IN_FORCE_STATUS,
        name: str | None = None,
    ) -> LawRecord:
        return LawRecord(
            id=law_id,
            name=name or f"Regulation {law_id}",
            title=f"The {law_id} Regulations {year}",
            classification=classification,
            geo_extent=geo_extent,
            status=status,
            year=year,
            duty_holders=list(duty_holders),
            functions=list(functions),
        )

    return _make


@pytest.fixture
def law_records(make_law: Callable[..., LawRecord]) -> list[LawRecord]:
    """
    Small corpus.

    Three duty-creating, in-force construction laws extend to Scotland and
    two to England. The remaining records must never be screened in.
    """
    return [
        make_law("scot-1", year=2021, duty_holders=("Org: Principal Contractor",)),
        make_law("scot-2", year=2019),
        make_law(
            "scot-3",
            year=2015,
            duty_holders=("Org: Manufacturer",),
            name="Manufacturing Safety (Scotland) Regulations",
        ),
        make_law("scot-amend", year=2022, functions=("Amending",)),
        make_law("scot-revoked", year=2010, status="Revoked"),
        make_law("eng-1", geo_extent="England", year=2020, duty_holders=("Org: Employer",)),
        make_law("eng-2", geo_extent="England", year=2018),
        make_law("uk-health-1", classification="HEALTH", geo_extent="United Kingdom"),
    ]


@pytest.fixture
def store(law_records: list[LawRecord]) -> InMemoryRegulationStore:
    """Counting in-memory regulation store."""
    return InMemoryRegulationStore(law_records)


@pytest.fixture
def screening_settings() -> ScreeningSettings:
    """Screening settings with short timeouts for tests."""
    return ScreeningSettings(
        store_timeout_seconds=0.5,
        screen_timeout_seconds=None,
        preview_limit=5,
        subscriber_queue_size=4,
        cache_max_entries=100,
    )


@pytest.fixture
def cache() -> InMemoryScreeningCache:
    return InMemoryScreeningCache(max_entries=100)


@pytest.fixture
def matcher(
    store: InMemoryRegulationStore,
    cache: InMemoryScreeningCache,
    screening_settings: ScreeningSettings,
) -> ApplicabilityMatcher:
    return ApplicabilityMatcher(store, cache, screening=screening_settings)


@pytest.fixture
def streamer(
    matcher: ApplicabilityMatcher,
    screening_settings: ScreeningSettings,
) -> ResultStreamer:
    return ResultStreamer(matcher, screening=screening_settings)


@pytest.fixture
def aggregator(matcher: ApplicabilityMatcher) -> LocationAggregator:
    return LocationAggregator(matcher)


# =============================================================================
# Organizations
# =============================================================================


@pytest.fixture
def basic_profile() -> dict[str, Any]:
    """The four basic identification fields only."""
    return {
        "organization_name": "Acme Build Ltd",
        "organization_type": "limited_company",
        "industry_sector": "construction",
        "headquarters_region": "scotland",
    }


@pytest.fixture
def enhanced_profile(basic_profile: dict[str, Any]) -> dict[str, Any]:
    """Basic fields plus four of five operational fields (score 0.64)."""
    return {
        **basic_profile,
        "total_employees": 120,
        "annual_turnover": 8_000_000,
        "operational_regions": ["scotland"],
        "business_activities": ["manufacturing"],
    }


@pytest.fixture
def full_profile(basic_profile: dict[str, Any]) -> dict[str, Any]:
    """Every profile field populated and mutually consistent."""
    return {
        **basic_profile,
        "total_employees": 120,
        "annual_turnover": 8_000_000,
        "operational_regions": ["scotland"],
        "business_activities": ["construction", "manufacturing"],
        "primary_sic_code": "41201",
        "compliance_requirements": ["manufacturing"],
        "registration_number": "SC123456",
        "risk_profile": "high",
        "special_circumstances": "Works on listed buildings",
    }


@pytest.fixture
def construction_scotland() -> Organization:
    """Sector and region only, single location."""
    return Organization(
        id="org-construction",
        profile={"industry_sector": "construction", "headquarters_region": "scotland"},
        locations=[
            {
                "id": "loc-1",
                "organization_id": "org-construction",
                "location_name": "Glasgow Yard",
                "geographic_region": "scotland",
                "is_primary_location": True,
            }
        ],
    )


# =============================================================================
# HTTP Client
# =============================================================================


@pytest_asyncio.fixture
async def applicability_client(
    matcher: ApplicabilityMatcher,
    streamer: ResultStreamer,
    aggregator: LocationAggregator,
) -> AsyncGenerator[AsyncClient, None]:
    """Test client for the Applicability Service, wired to the in-memory store."""
    from services.applicability.main import app

    app.state.matcher = matcher
    app.state.streamer = streamer
    app.state.aggregator = aggregator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    await streamer.close()
    app.state.matcher = None
    app.state.streamer = None
    app.state.aggregator = None
