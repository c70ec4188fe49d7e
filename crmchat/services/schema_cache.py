"""Time-bounded cache of the Airtable table/field catalog.

One ``SchemaCache`` is built per process (see ``main.lifespan``) and read
by every chat turn. Successful fetches are kept for ``ttl`` seconds;
failures are never stored, so the next call retries immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from crmchat.services.airtable_client import AirtableClient, AirtableError

logger = logging.getLogger(__name__)

SCHEMA_CACHE_TTL_SECONDS = 300.0
CHOICE_FIELD_TYPES = ("singleSelect", "multipleSelect")


@dataclass
class SchemaResult:
    """Simplified schema as fed to the prompt.

    ``tables`` holds ``{"tableName": str, "fields": [...]}`` entries;
    ``error`` is set only when the fetch failed.
    """

    tables: list[dict] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"tables": self.tables}
        if self.error:
            data["error"] = self.error
        return data


def simplify_tables(raw_tables: list[dict]) -> list[dict]:
    """Reduce metadata API tables to names, field types and choice options."""
    tables = []
    for table in raw_tables:
        fields = []
        for f in table.get("fields", []):
            simple = {"name": f.get("name"), "type": f.get("type")}
            if f.get("type") in CHOICE_FIELD_TYPES:
                choices = (f.get("options") or {}).get("choices") or []
                names = [
                    c.get("name")
                    for c in choices
                    if isinstance(c, dict) and isinstance(c.get("name"), str)
                ]
                if names:
                    simple["options"] = names
            fields.append(simple)
        tables.append({"tableName": table.get("name"), "fields": fields})
    return tables


class SchemaCache:
    """Memoizes the simplified schema until ``clock() >= expires_at``.

    Refreshes are not locked: two callers hitting an expired entry at the
    same moment may both fetch.
    """

    def __init__(
        self,
        client: AirtableClient,
        *,
        ttl: float = SCHEMA_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl = ttl
        self._clock = clock
        self._snapshot: SchemaResult | None = None
        self._expires_at = 0.0

    @property
    def is_fresh(self) -> bool:
        return self._snapshot is not None and self._clock() < self._expires_at

    def invalidate(self) -> None:
        self._snapshot = None
        self._expires_at = 0.0

    async def get_schema(self) -> SchemaResult:
        if self.is_fresh:
            return self._snapshot

        try:
            raw_tables = await self._client.list_tables()
        except AirtableError as exc:
            if exc.status is None:
                error = f"Metadata: {exc.detail}"
            else:
                error = f"Metadata API: {exc}"
            logger.warning("Schema fetch failed: %s", error)
            return SchemaResult(tables=[], error=error)

        snapshot = SchemaResult(tables=simplify_tables(raw_tables))
        self._snapshot = snapshot
        self._expires_at = self._clock() + self._ttl
        logger.info("Schema cache refreshed (%d tables)", len(snapshot.tables))
        return snapshot
