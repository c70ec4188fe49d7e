"""Tools the model may call, and their dispatch.

Each tool is a ``ToolSpec``: Gemini declaration, pydantic input model and
executor. ``execute_tool`` is the only entry point and never raises;
bad input, unknown names and executor crashes all come back as text the
model can read and act on.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from google.genai import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from crmchat.services.tabular_service import TabularService

logger = logging.getLogger(__name__)

CHART_TABLES = ("Leads", "Clients", "Projets")
CHART_TYPES = ("pie", "bar")

SEARCH_RECORDS = "searchRecords"
GET_RECORD_DETAILS = "getRecordDetails"
GENERATE_VISUAL_CHART = "generateVisualChart"


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SearchRecordsInput(_ToolInput):
    table: str = Field(..., min_length=1)
    # Empty formulas are accepted here and answered with guidance by
    # TabularService.search.
    filter_by_formula: str = Field(..., alias="filterByFormula")


class RecordDetailsInput(_ToolInput):
    record_id: str = Field(..., alias="recordId", min_length=1)
    table: str = Field(..., min_length=1)


class VisualChartInput(_ToolInput):
    table: Literal["Leads", "Clients", "Projets"]
    chart_type: Literal["pie", "bar"] = Field(..., alias="chartType")
    group_by: str = Field(..., alias="groupBy", min_length=1)


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

_search_records_decl = types.FunctionDeclaration(
    name=SEARCH_RECORDS,
    description=(
        "Search records of an Airtable table with a filter formula. Use the "
        "schema for the EXACT table name (e.g. 'Clients') and field names."
    ),
    parameters=types.Schema(
        type="OBJECT",
        properties={
            "table": types.Schema(
                type="STRING",
                description="Exact Airtable table name (the schema's tableName, e.g. Clients, Leads, Projets)",
            ),
            "filterByFormula": types.Schema(
                type="STRING",
                description=(
                    "Airtable formula. To list ALL records use: 1 (or TRUE). "
                    "Otherwise e.g. NOT(ISERROR(SEARCH(\"Acme\", {Nom})))"
                ),
            ),
        },
        required=["table", "filterByFormula"],
    ),
)

_get_record_details_decl = types.FunctionDeclaration(
    name=GET_RECORD_DETAILS,
    description=(
        "Fetch every field of one record by its ID, plus its comments. Use it "
        "when the user asks for the details of a record whose ID you know."
    ),
    parameters=types.Schema(
        type="OBJECT",
        properties={
            "recordId": types.Schema(
                type="STRING",
                description="Airtable record ID (e.g. recXXXXXXXXXXXXXX)",
            ),
            "table": types.Schema(
                type="STRING",
                description="Exact Airtable table name, as in the schema",
            ),
        },
        required=["recordId", "table"],
    ),
)

_generate_visual_chart_decl = types.FunctionDeclaration(
    name=GENERATE_VISUAL_CHART,
    description=(
        "MUST be used when the user asks for a visual chart, pie chart, bar "
        "chart or a dashboard showing the distribution of data "
        "(e.g. 'Montre moi un camembert des statuts')."
    ),
    parameters=types.Schema(
        type="OBJECT",
        properties={
            "table": types.Schema(
                type="STRING",
                enum=list(CHART_TABLES),
                description="Airtable table to analyse (Leads, Clients or Projets).",
            ),
            "chartType": types.Schema(
                type="STRING",
                enum=list(CHART_TYPES),
                description="Chart to generate (pie or bar).",
            ),
            "groupBy": types.Schema(
                type="STRING",
                description="Exact field name to group by (often 'Status', 'Statut' or 'Secteur').",
            ),
        },
        required=["table", "chartType", "groupBy"],
    ),
)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


async def _run_search_records(tabular: TabularService, args: SearchRecordsInput) -> str:
    return await tabular.search(args.table, args.filter_by_formula)


async def _run_get_record_details(tabular: TabularService, args: RecordDetailsInput) -> str:
    return await tabular.get_detail(args.table, args.record_id)


async def _run_generate_visual_chart(tabular: TabularService, args: VisualChartInput) -> dict:
    return await tabular.aggregate(args.table, args.group_by, args.chart_type)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    name: str
    label: str  # status line shown while the tool runs
    declaration: types.FunctionDeclaration
    input_model: type[_ToolInput]
    run: Callable[[TabularService, Any], Awaitable[str | dict]]


TOOL_REGISTRY: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            name=SEARCH_RECORDS,
            label="Recherche dans Airtable en cours...",
            declaration=_search_records_decl,
            input_model=SearchRecordsInput,
            run=_run_search_records,
        ),
        ToolSpec(
            name=GET_RECORD_DETAILS,
            label="Lecture du dossier en cours...",
            declaration=_get_record_details_decl,
            input_model=RecordDetailsInput,
            run=_run_get_record_details,
        ),
        ToolSpec(
            name=GENERATE_VISUAL_CHART,
            label="Calcul des statistiques en cours...",
            declaration=_generate_visual_chart_decl,
            input_model=VisualChartInput,
            run=_run_generate_visual_chart,
        ),
    )
}

TOOLS = [types.Tool(function_declarations=[s.declaration for s in TOOL_REGISTRY.values()])]

DEFAULT_TOOL_LABEL = "Traitement en cours..."


def tool_label(name: str) -> str:
    spec = TOOL_REGISTRY.get(name)
    return spec.label if spec else DEFAULT_TOOL_LABEL


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "input"
        problems.append(f"{location}: {err.get('msg', 'invalid value')}")
    return "; ".join(problems)


async def execute_tool(name: str, args: dict | None, tabular: TabularService) -> str | dict:
    """Validate *args* and run the named tool. Never raises."""
    spec = TOOL_REGISTRY.get(name)
    if spec is None:
        return f"Unknown tool: {name}. Available tools: {', '.join(TOOL_REGISTRY)}."

    try:
        parsed = spec.input_model.model_validate(args or {})
    except ValidationError as exc:
        return (
            f"Invalid arguments for {name}: {_describe_validation_error(exc)}. "
            "Fix the arguments and call the tool again."
        )

    try:
        return await spec.run(tabular, parsed)
    except Exception as exc:
        logger.exception("Tool %s failed", name)
        return (
            f"Error: {name} failed unexpectedly ({type(exc).__name__}: {exc}). "
            "Tell the user the data could not be retrieved."
        )
