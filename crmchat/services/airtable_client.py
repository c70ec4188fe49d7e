"""Thin async client for the Airtable REST API.

Wraps the handful of endpoints the assistant needs (table metadata,
filtered record listing, single-record fetch, record comments). Every
failure, transport or HTTP status, is raised as ``AirtableError`` so that
callers have a single exception type to translate.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

PAGE_SIZE = 100  # Airtable's maximum page size


class AirtableError(Exception):
    """Raised when an Airtable request fails.

    ``status`` is ``None`` for transport-level failures (timeouts, DNS,
    refused connections).
    """

    def __init__(self, status: int | None, detail: str) -> None:
        self.status = status
        self.detail = detail
        super().__init__(f"{status} {detail}" if status is not None else detail)

    @property
    def access_denied(self) -> bool:
        return self.status in (401, 403)


def _segment(value: str) -> str:
    return quote(value, safe="")


class AirtableClient:
    """Async Airtable client bound to one base."""

    def __init__(
        self,
        api_key: str,
        base_id: str,
        *,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_id = base_id
        self._http = httpx.AsyncClient(
            base_url=api_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, path: str, params: dict | None = None) -> dict:
        try:
            response = await self._http.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise AirtableError(None, "Airtable request timed out") from exc
        except httpx.RequestError as exc:
            raise AirtableError(None, str(exc) or type(exc).__name__) from exc

        if response.is_error:
            logger.warning(
                "Airtable returned %d for %s: %s",
                response.status_code,
                path,
                response.text[:200],
            )
            raise AirtableError(
                response.status_code, response.text or response.reason_phrase
            )
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Airtable returned a non-JSON body for %s", path)
            raise AirtableError(response.status_code, "Invalid JSON response") from exc

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[dict]:
        """Return the raw table definitions of the base (metadata API)."""
        data = await self._get(f"/meta/bases/{_segment(self.base_id)}/tables")
        return data.get("tables") or []

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def list_records(
        self,
        table: str,
        *,
        filter_by_formula: str | None = None,
        fields: list[str] | None = None,
        max_records: int = 100,
    ) -> list[dict]:
        """List records, following ``offset`` pagination up to *max_records*."""
        path = f"/{_segment(self.base_id)}/{_segment(table)}"
        records: list[dict] = []
        offset: str | None = None

        while len(records) < max_records:
            params: dict = {
                "maxRecords": max_records,
                "pageSize": min(PAGE_SIZE, max_records - len(records)),
            }
            if filter_by_formula:
                params["filterByFormula"] = filter_by_formula
            if fields:
                params["fields[]"] = fields
            if offset:
                params["offset"] = offset

            data = await self._get(path, params=params)
            records.extend(data.get("records") or [])
            offset = data.get("offset")
            if not offset:
                break

        return records[:max_records]

    async def get_record(self, table: str, record_id: str) -> dict:
        path = f"/{_segment(self.base_id)}/{_segment(table)}/{_segment(record_id)}"
        return await self._get(path)

    async def list_comments(self, table: str, record_id: str) -> list[dict]:
        """Return a record's comments.

        The comments endpoint requires a personal access token; weaker
        credentials get a 401/403 (see ``AirtableError.access_denied``).
        """
        path = (
            f"/{_segment(self.base_id)}/{_segment(table)}"
            f"/{_segment(record_id)}/comments"
        )
        data = await self._get(path)
        return data.get("comments") or []
