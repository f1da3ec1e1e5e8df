from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Sequence

from cdr_extraction.archivers import Archiver
from cdr_extraction.config import ExtractionSpec
from cdr_extraction.domain import ExtractionReport, ExtractionWindow, PlannedQuery, RunContext, TableStatus
from cdr_extraction.finalizer import Finalizer
from cdr_extraction.output_layout import OutputLayout
from cdr_extraction.query_filter import build_select
from cdr_extraction.query_merger import QueryMerger
from cdr_extraction.row_sources import RowSource
from cdr_extraction.table_planner import TableSetPlanner
from cdr_extraction.utils import utc_now
from cdr_extraction.window_resolver import WindowRequest, WindowResolver

logger = logging.getLogger(__name__)


class ExtractionRunner:
    """
    Coordinates: resolve window -> plan tables -> query + merge -> publish.

    Strictly sequential. The staging file belongs to this run alone; it is
    either published or deleted before run() returns.
    """

    def __init__(
        self,
        *,
        window_resolver: WindowResolver,
        planner: TableSetPlanner,
        merger: QueryMerger,
        finalizer: Finalizer,
        layout: OutputLayout,
        logger: logging.Logger = logger,
    ):
        self.window_resolver = window_resolver
        self.planner = planner
        self.merger = merger
        self.finalizer = finalizer
        self.layout = layout
        self.logger = logger

    def resolve_window(self, now: datetime | None = None) -> ExtractionWindow:
        return self.window_resolver.resolve(now or utc_now())

    def run(self, now: datetime | None = None, *, window: ExtractionWindow | None = None) -> ExtractionReport:
        """Pass a window already returned by resolve_window() to skip resolving it again."""
        if window is None:
            window = self.resolve_window(now)
        ctx = RunContext(run_id=uuid.uuid4().hex[:12], window=window)
        tables = self.planner.plan_tables(window)
        staging_path = self.layout.get_staging_path_for(window)

        self.logger.info("Run %s: window %s across %s tables", ctx.run_id, window, len(tables))

        try:
            outcomes = self.merger.merge(window, tables, staging_path)
            artifact = self.finalizer.publish(staging_path)
        except Exception:
            self.logger.debug("Run %s failed; discarding partial output", ctx.run_id, exc_info=True)
            self.finalizer.abort(staging_path)
            raise

        report = ExtractionReport(window=window, artifact_path=artifact, outcomes=outcomes)
        skipped = [o.table.name for o in outcomes if o.status is TableStatus.SKIPPED]
        self.logger.info(
            "Run %s complete: %s rows -> %s (skipped: %s)",
            ctx.run_id, report.rows_total, artifact, ", ".join(skipped) or "none",
        )
        return report

    def plan(self, now: datetime | None = None) -> Sequence[PlannedQuery]:
        """Dry run: the queries run() would issue, without touching the row source or filesystem."""
        window = self.resolve_window(now)
        query_filter = self.merger.build_filter(window)
        return [
            PlannedQuery(table=table, sql=build_select(table.name, self.merger.fields, query_filter))
            for table in self.planner.plan_tables(window)
        ]


def build_runner(
    spec: ExtractionSpec,
    row_source: RowSource,
    *,
    start: str | None = None,
    end: str | None = None,
    yesterday: bool = False,
    archiver: Archiver | None = None,
    logger: logging.Logger = logger,
) -> ExtractionRunner:
    request = WindowRequest(
        start=start,
        end=end,
        yesterday=yesterday,
        utc_offset_hours=spec.utc_offset_hours,
        probe_interval_seconds=spec.probe_interval_seconds,
    )
    layout = OutputLayout(output_root=spec.output_dir, file_prefix=spec.file_prefix)
    merger = QueryMerger(
        row_source,
        layout,
        fields=spec.fields,
        time_field=spec.time_field,
        encoding=spec.time_encoding,
        logger=logger,
    )
    return ExtractionRunner(
        window_resolver=WindowResolver(request, logger=logger),
        planner=TableSetPlanner(spec.table_prefix),
        merger=merger,
        finalizer=Finalizer(archiver or spec.archive.build(), layout, logger=logger),
        layout=layout,
        logger=logger,
    )
