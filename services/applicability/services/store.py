"""
Regulation Store
================

Query interface to the regulation corpus.

Every query is restricted to duty-creating laws (function "Making"). The
engine only ever reads from the store.

Implementations:
- PostgresRegulationStore: the uk_lrt corpus table
- InMemoryRegulationStore: fixed record set with call counters, for tests
  and local development

Version: 0.1.0
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shared.config import settings
from shared.database.postgres import PostgresClient, postgres_session
from shared.logging import get_logger
from shared.models.regulation import DUTY_CREATING_FUNCTION, IN_FORCE_STATUS, LawRecord


logger = get_logger(__name__)


class RegulationStoreError(Exception):
    """The regulation store is unreachable or a query failed."""

    reason = "store_unavailable"


class RegulationStoreTimeout(RegulationStoreError):
    """A store query did not finish within the configured timeout."""

    reason = "store_timeout"


class RegulationStore(ABC):
    """Read-only, duty-creating-only view of the regulation corpus."""

    @abstractmethod
    async def count(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
    ) -> int:
        """Number of matching duty-creating laws."""

    @abstractmethod
    async def preview(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
        limit: int = 10,
    ) -> list[LawRecord]:
        """Up to `limit` matching duty-creating laws, newest first."""

    @abstractmethod
    async def candidates(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
    ) -> list[LawRecord]:
        """Every matching duty-creating law, newest first."""

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy"}


# =============================================================================
# In-Memory Store
# =============================================================================


class InMemoryRegulationStore(RegulationStore):
    """
    Regulation store over a fixed list of records.

    Counts every call so tests can assert how often the corpus was hit.
    Set `fail` to simulate an outage and `delay` to simulate a slow store.
    """

    def __init__(
        self,
        records: Iterable[LawRecord] = (),
        delay: float = 0.0,
        fail: bool = False,
    ) -> None:
        self.records = list(records)
        self.delay = delay
        self.fail = fail
        self.calls: dict[str, int] = {"count": 0, "preview": 0, "candidates": 0}

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def _match(
        self,
        operation: str,
        classification: str | None,
        geo_extent: str,
        status: str,
    ) -> list[LawRecord]:
        self.calls[operation] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RegulationStoreError("Regulation store unavailable")

        matched = [
            r
            for r in self.records
            if r.is_duty_creating
            and (classification is None or r.classification == classification)
            and r.geo_extent == geo_extent
            and r.status == status
        ]
        return sorted(matched, key=lambda r: (-(r.year or 0), r.id))

    async def count(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
    ) -> int:
        return len(await self._match("count", classification, geo_extent, status))

    async def preview(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
        limit: int = 10,
    ) -> list[LawRecord]:
        matched = await self._match("preview", classification, geo_extent, status)
        return matched[: max(0, limit)]

    async def candidates(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
    ) -> list[LawRecord]:
        return await self._match("candidates", classification, geo_extent, status)


# =============================================================================
# PostgreSQL Store
# =============================================================================

_RECORD_COLUMNS = (
    "id, name, title_en, family, geo_extent, live, year, md_description, "
    "duty_holder, function"
)


def _tag_list(value: Any) -> list[str]:
    """Flatten a JSONB tag column (list, map or JSON string) to a list."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return [value]
    if isinstance(value, dict):
        items = value.get("items")
        if isinstance(items, list):
            return [str(v) for v in items]
        return [str(k) for k in value]
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


class PostgresRegulationStore(RegulationStore):
    """Regulation store backed by the uk_lrt corpus table."""

    def __init__(self, table: str | None = None) -> None:
        self.table = table or settings.postgres.corpus_table

    def _where(self, classification: str | None) -> str:
        clauses = [
            "geo_extent = :geo_extent",
            "live = :status",
            "jsonb_exists(function, :duty_function)",
        ]
        if classification is not None:
            clauses.append("family = :family")
        return " AND ".join(clauses)

    def _bind(self, classification: str | None, geo_extent: str, status: str) -> dict[str, Any]:
        params: dict[str, Any] = {
            "geo_extent": geo_extent,
            "status": status,
            "duty_function": DUTY_CREATING_FUNCTION,
        }
        if classification is not None:
            params["family"] = classification
        return params

    def _to_record(self, row: Any) -> LawRecord:
        return LawRecord(
            id=str(row.id),
            name=row.name,
            title=row.title_en,
            classification=row.family,
            geo_extent=row.geo_extent,
            status=row.live,
            year=row.year,
            description=row.md_description,
            duty_holders=_tag_list(row.duty_holder),
            functions=_tag_list(row.function),
        )

    async def count(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
    ) -> int:
        query = text(f"SELECT count(*) FROM {self.table} WHERE {self._where(classification)}")
        try:
            async with postgres_session() as session:
                result = await session.execute(
                    query, self._bind(classification, geo_extent, status)
                )
                return int(result.scalar() or 0)
        except (SQLAlchemyError, OSError) as e:
            logger.error("regulation_count_failed", error=str(e), geo_extent=geo_extent)
            raise RegulationStoreError(str(e)) from e

    async def _select(
        self,
        classification: str | None,
        geo_extent: str,
        status: str,
        limit: int | None,
    ) -> list[LawRecord]:
        sql = (
            f"SELECT {_RECORD_COLUMNS} FROM {self.table} "
            f"WHERE {self._where(classification)} "
            "ORDER BY year DESC NULLS LAST, id"
        )
        params = self._bind(classification, geo_extent, status)
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit

        try:
            async with postgres_session() as session:
                result = await session.execute(text(sql), params)
                return [self._to_record(row) for row in result]
        except (SQLAlchemyError, OSError) as e:
            logger.error("regulation_query_failed", error=str(e), geo_extent=geo_extent)
            raise RegulationStoreError(str(e)) from e

    async def preview(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
        limit: int = 10,
    ) -> list[LawRecord]:
        return await self._select(classification, geo_extent, status, max(0, limit))

    async def candidates(
        self,
        classification: str | None,
        geo_extent: str,
        status: str = IN_FORCE_STATUS,
    ) -> list[LawRecord]:
        return await self._select(classification, geo_extent, status, None)

    async def health_check(self) -> dict[str, Any]:
        return await PostgresClient.health_check()
