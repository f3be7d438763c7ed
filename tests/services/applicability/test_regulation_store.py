"""
Regulation Store Tests
======================

Tests for the in-memory store and the PostgreSQL query layer.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from services.applicability.services import store as store_module
from services.applicability.services.store import (
    InMemoryRegulationStore,
    PostgresRegulationStore,
    RegulationStoreError,
    _tag_list,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_session():
    """Mock database session."""
    return AsyncMock()


@pytest.fixture
def patched_session(mock_session):
    """Route the store's sessions to the mock session."""

    @asynccontextmanager
    async def fake_session():
        yield mock_session

    with patch.object(store_module, "postgres_session", fake_session):
        yield mock_session


def corpus_row(**overrides: Any) -> SimpleNamespace:
    row = {
        "id": "UK_uksi_2015_51",
        "name": "CDM 2015",
        "title_en": "Construction (Design and Management) Regulations",
        "family": "CONSTRUCTION",
        "geo_extent": "Great Britain",
        "live": "In force",
        "year": 2015,
        "md_description": None,
        "duty_holder": {"items": ["Org: Principal Contractor", "Org: Client"]},
        "function": '["Making"]',
    }
    row.update(overrides)
    return SimpleNamespace(**row)


# =============================================================================
# In-Memory Store
# =============================================================================


class TestInMemoryStore:
    """Tests for the counting in-memory store."""

    @pytest.mark.asyncio
    async def test_only_duty_creating_in_force_records(self, store: InMemoryRegulationStore) -> None:
        records = await store.candidates("CONSTRUCTION", "Scotland")

        assert [r.id for r in records] == ["scot-1", "scot-2", "scot-3"]
        assert await store.count("CONSTRUCTION", "Scotland") == 3

    @pytest.mark.asyncio
    async def test_open_classification_matches_any_family(
        self, store: InMemoryRegulationStore
    ) -> None:
        assert [r.id for r in await store.candidates(None, "United Kingdom")] == ["uk-health-1"]

    @pytest.mark.asyncio
    async def test_preview_limit(self, store: InMemoryRegulationStore) -> None:
        assert [r.id for r in await store.preview("CONSTRUCTION", "England", limit=1)] == ["eng-1"]

    @pytest.mark.asyncio
    async def test_calls_are_counted(self, store: InMemoryRegulationStore) -> None:
        await store.count("CONSTRUCTION", "Scotland")
        await store.preview("CONSTRUCTION", "Scotland")

        assert store.calls == {"count": 1, "preview": 1, "candidates": 0}
        assert store.total_calls == 2

    @pytest.mark.asyncio
    async def test_failure(self, store: InMemoryRegulationStore) -> None:
        store.fail = True

        with pytest.raises(RegulationStoreError) as exc_info:
            await store.count("CONSTRUCTION", "Scotland")

        assert exc_info.value.reason == "store_unavailable"


# =============================================================================
# PostgreSQL Store
# =============================================================================


class TestPostgresStore:
    """Tests for SQL generation and row mapping with a mocked session."""

    @pytest.mark.asyncio
    async def test_count_filters_duty_creating_laws(self, patched_session) -> None:
        result = MagicMock()
        result.scalar.return_value = 42
        patched_session.execute.return_value = result

        count = await PostgresRegulationStore(table="public.uk_lrt").count(
            "CONSTRUCTION", "Scotland"
        )

        assert count == 42
        query, params = patched_session.execute.await_args.args
        sql = str(query)
        assert "FROM public.uk_lrt" in sql
        assert "jsonb_exists(function, :duty_function)" in sql
        assert "family = :family" in sql
        assert params == {
            "geo_extent": "Scotland",
            "status": "In force",
            "duty_function": "Making",
            "family": "CONSTRUCTION",
        }

    @pytest.mark.asyncio
    async def test_open_classification_omits_family_clause(self, patched_session) -> None:
        result = MagicMock()
        result.scalar.return_value = 0
        patched_session.execute.return_value = result

        await PostgresRegulationStore(table="public.uk_lrt").count(None, "United Kingdom")

        query, params = patched_session.execute.await_args.args
        assert "family" not in str(query)
        assert "family" not in params

    @pytest.mark.asyncio
    async def test_preview_maps_rows(self, patched_session) -> None:
        patched_session.execute.return_value = [corpus_row()]

        records = await PostgresRegulationStore(table="public.uk_lrt").preview(
            "CONSTRUCTION", "Great Britain", limit=3
        )

        query, params = patched_session.execute.await_args.args
        assert "LIMIT :limit" in str(query)
        assert "ORDER BY year DESC" in str(query)
        assert params["limit"] == 3

        record = records[0]
        assert record.id == "UK_uksi_2015_51"
        assert record.title == "Construction (Design and Management) Regulations"
        assert record.classification == "CONSTRUCTION"
        assert record.duty_holders == ["Org: Principal Contractor", "Org: Client"]
        assert record.is_duty_creating

    @pytest.mark.asyncio
    async def test_candidates_are_unbounded(self, patched_session) -> None:
        patched_session.execute.return_value = []

        await PostgresRegulationStore(table="public.uk_lrt").candidates(
            "CONSTRUCTION", "Great Britain"
        )

        query, params = patched_session.execute.await_args.args
        assert "LIMIT" not in str(query)
        assert "limit" not in params

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self, patched_session) -> None:
        patched_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(RegulationStoreError):
            await PostgresRegulationStore(table="public.uk_lrt").count("CONSTRUCTION", "Scotland")


class TestTagList:
    """Tests for flattening JSONB tag columns."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, []),
            (["Making"], ["Making"]),
            ('["Making", "Amending"]', ["Making", "Amending"]),
            ({"items": ["Org: Employer"]}, ["Org: Employer"]),
            ({"Making": True, "Amending": True}, ["Making", "Amending"]),
            ("Making", ["Making"]),
        ],
    )
    def test_tag_list(self, value: Any, expected: list[str]) -> None:
        assert _tag_list(value) == expected
