"""Model-facing operations on the Airtable base.

Every result here is fed straight back into the model's context, so none
of these operations raise: failures come back as guidance text (or, for
charts, inside the success-shaped payload) that tells the model how to
correct its next call.
"""

from __future__ import annotations

import json
import logging
from collections import Counter

from crmchat.services.airtable_client import AirtableClient, AirtableError

logger = logging.getLogger(__name__)

SEARCH_MAX_RECORDS = 100
AGGREGATE_MAX_RECORDS = 500
UNKNOWN_LABEL = "unknown"
COMMENTS_ERROR_KEY = "_commentsError"

COMMENTS_DENIED_MESSAGE = (
    "Comments unavailable: the Airtable Comments API requires a Personal "
    "Access Token (PAT) in AIRTABLE_API_KEY."
)


def _label(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and "name" in value:
        return str(value.get("name") or "")
    return str(value)


def normalize_group_values(value: object) -> list[str]:
    """Turn a raw field value into the labels it contributes to a chart.

    Strings and numbers give one label, choice lists give one label per
    element. Missing, empty and blank values collapse to ``"unknown"``.
    """
    if value is None:
        raw: list[str] = []
    elif isinstance(value, list):
        raw = [_label(v) for v in value]
    else:
        raw = [_label(value)]

    labels = [v.strip() or UNKNOWN_LABEL for v in raw]
    return labels or [UNKNOWN_LABEL]


class TabularService:
    """Search, detail and aggregation over the remote tables."""

    def __init__(self, client: AirtableClient) -> None:
        self._client = client

    async def search(self, table: str, filter_formula: str) -> str:
        """Run a formula-filtered search; return JSON records or guidance."""
        formula = (filter_formula or "").strip()
        if not formula:
            return (
                "Error: filterByFormula cannot be empty. "
                "To list every record, use the formula 1."
            )

        try:
            records = await self._client.list_records(
                table,
                filter_by_formula=formula,
                max_records=SEARCH_MAX_RECORDS,
            )
        except AirtableError as exc:
            return (
                f'Airtable error (table "{table}"): {exc}. The filterByFormula may '
                "contain a syntax error or reference a wrong field name. Fix the "
                "formula (use SEARCH(LOWER('x'), LOWER({Field})), exact option "
                "values for select fields) and try again."
            )

        if not records:
            return (
                f'No results found in table "{table}" for this formula. Check the '
                "table name (exactly as in the schema) and the formula. If there "
                "are 0 results, retry with a shorter or partial keyword "
                "(AIRTABLE SEARCH RULES)."
            )

        return json.dumps(
            [{"id": r.get("id"), "fields": r.get("fields", {})} for r in records],
            ensure_ascii=False,
            default=str,
        )

    async def get_detail(self, table: str, record_id: str) -> str:
        """Return a record's fields plus its comment thread as JSON.

        A failed comments call never fails the whole lookup; the comments
        slot then holds ``{"_commentsError": ...}`` instead of a list.
        """
        try:
            record = await self._client.get_record(table, record_id)
        except AirtableError as exc:
            logger.info("Record %s not found in %s: %s", record_id, table, exc)
            return (
                "Error: could not find this record. "
                "Check the record ID and the table name."
            )

        comments: list[dict] | dict
        try:
            comments = await self._client.list_comments(table, record_id)
        except AirtableError as exc:
            if exc.access_denied:
                comments = {COMMENTS_ERROR_KEY: COMMENTS_DENIED_MESSAGE}
            else:
                comments = {COMMENTS_ERROR_KEY: f"Comments: {exc}"}

        summary = {
            "id": record.get("id", record_id),
            **record.get("fields", {}),
            "comments": comments,
        }
        return json.dumps(summary, indent=2, ensure_ascii=False, default=str)

    async def aggregate(self, table: str, group_by: str, chart_type: str) -> dict:
        """Count records per value of *group_by* for a pie or bar chart."""
        try:
            records = await self._client.list_records(
                table,
                fields=[group_by],
                max_records=AGGREGATE_MAX_RECORDS,
            )
        except AirtableError as exc:
            return {
                "chartType": chart_type,
                "data": [],
                "error": (
                    f'Error computing the chart for table "{table}" grouped by '
                    f'"{group_by}": {exc}'
                ),
            }

        counts: Counter[str] = Counter()
        for record in records:
            value = record.get("fields", {}).get(group_by)
            counts.update(normalize_group_values(value))

        return {
            "chartType": chart_type,
            "data": [{"name": name, "value": value} for name, value in counts.items()],
        }
