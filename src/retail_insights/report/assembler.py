from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from retail_insights.data.dataset import OrdersDataset
from retail_insights.exceptions.errors import (
    DataNotFoundError,
    InvalidQueryError,
    QueryExecutionError,
    SchemaMismatchError,
)
from retail_insights.execution.runner import QueryRunner
from retail_insights.logging.logger import get_logger
from retail_insights.queries.definitions import QueryDefinition
from retail_insights.report.narrative import render_narrative

log = get_logger("report.assembler")


@dataclass(frozen=True)
class SectionError:
    kind: str
    message: str
    missing_columns: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReportSection:
    definition: QueryDefinition
    rows: List[Dict[str, Any]]
    narrative: str = ""
    error: Optional[SectionError] = None
    # Set when the rows are fine but the narrative could not be rendered.
    warning: Optional[str] = None

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def title(self) -> str:
        return self.definition.title

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Report:
    source: str
    table: str
    dataset_rows: int
    generated_at: datetime
    sections: List[ReportSection]

    @property
    def failed_sections(self) -> List[ReportSection]:
        return [s for s in self.sections if not s.ok]


def _section_error(e: Exception) -> SectionError:
    kind = {
        SchemaMismatchError: "SchemaMismatch",
        InvalidQueryError: "InvalidQuery",
        QueryExecutionError: "QueryExecution",
    }.get(type(e), type(e).__name__)
    return SectionError(kind=kind, message=str(e), missing_columns=list(getattr(e, "missing", []) or []))


def build_section(runner: QueryRunner, qd: QueryDefinition) -> ReportSection:
    try:
        rows = runner.run(qd)
    except (InvalidQueryError, QueryExecutionError) as e:
        log.error("Section failed", extra={"query": qd.key, "error": str(e)})
        return ReportSection(definition=qd, rows=[], error=_section_error(e))
    try:
        narrative = render_narrative(qd, rows)
    except Exception as e:
        log.exception("Narrative rendering failed", extra={"query": qd.key})
        return ReportSection(
            definition=qd, rows=rows, narrative=qd.narrative, warning=f"Narrative rendering failed: {e}"
        )
    return ReportSection(definition=qd, rows=rows, narrative=narrative)


def assemble_report(dataset: Optional[OrdersDataset], definitions: Sequence[QueryDefinition]) -> Report:
    """Run every definition in order and pair its rows with the rendered narrative.

    Section order always follows ``definitions``. A failing query is recorded on its
    own section and the remaining sections still run; a missing dataset aborts the
    whole report with DataNotFoundError.
    """
    if dataset is None:
        raise DataNotFoundError("No dataset loaded; cannot assemble report.")
    runner = QueryRunner(dataset)

    sections = [build_section(runner, qd) for qd in definitions]
    failed = sum(1 for s in sections if not s.ok)
    log.info("Report assembled", extra={"sections": len(sections), "failed": failed, "source": dataset.source})

    return Report(
        source=dataset.source,
        table=dataset.table,
        dataset_rows=dataset.row_count,
        generated_at=datetime.now(timezone.utc),
        sections=sections,
    )
