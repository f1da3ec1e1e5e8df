import logging
import shutil
from pathlib import Path
from typing import Sequence

from cdr_extraction.domain import ExtractionWindow, TableOutcome, TableReference, TableStatus
from cdr_extraction.errors import (
    AuthoritativeQueryFailed,
    RowSourceError,
    RowSourceErrorKind,
    SupplementaryQueryFailed,
)
from cdr_extraction.output_layout import OutputLayout
from cdr_extraction.packed_date import TimeEncoding
from cdr_extraction.query_filter import QueryFilter
from cdr_extraction.row_sources import RowSource

logger = logging.getLogger(__name__)


class QueryMerger:
    """
    Queries each candidate table in order and concatenates the results into
    one staging file.

    Every table gets the same [start, end) predicate, so each row that comes
    back is already inside the window and plain concatenation is enough: no
    sorting, no dedupe.

    A table's rows go to a segment file first and are appended to the staging
    file only once its query has finished, so a query that fails halfway never
    leaves half a table behind.
    """

    def __init__(
        self,
        row_source: RowSource,
        layout: OutputLayout,
        *,
        fields: Sequence[str],
        time_field: str,
        encoding: TimeEncoding,
        logger: logging.Logger = logger,
    ):
        self.row_source = row_source
        self.layout = layout
        self.fields = list(fields)
        self.time_field = time_field
        self.encoding = encoding
        self.logger = logger

    def build_filter(self, window: ExtractionWindow) -> QueryFilter:
        return QueryFilter.for_window(self.time_field, window, self.encoding)

    def merge(self, window: ExtractionWindow, tables: Sequence[TableReference], staging_path: Path) -> list[TableOutcome]:
        """
        Raises AuthoritativeQueryFailed if the first table fails, or RowSourceError
        if any table rejects the query as malformed. The caller owns cleanup of
        `staging_path` on failure.
        """
        query_filter = self.build_filter(window)
        self.layout.ensure_directories()
        staging_path.write_bytes(b"")

        outcomes: list[TableOutcome] = []
        for table in tables:
            try:
                rows = self._query_table(table, query_filter, staging_path)
            except RowSourceError as e:
                if table.is_authoritative:
                    raise AuthoritativeQueryFailed(e) from e
                if e.kind is RowSourceErrorKind.MALFORMED_QUERY:
                    raise
                skipped = SupplementaryQueryFailed(e)
                self.logger.debug("%s", skipped)
                outcomes.append(TableOutcome(table=table, status=TableStatus.SKIPPED, error=str(e)))
                continue

            self.logger.info("%s table %s: %s rows", table.role.value, table.name, rows)
            outcomes.append(TableOutcome(table=table, status=TableStatus.LOADED, rows=rows))

        return outcomes

    def _query_table(self, table: TableReference, query_filter: QueryFilter, staging_path: Path) -> int:
        segment = self.layout.get_segment_path_for(staging_path, table.name)
        rows = 0
        try:
            with open(segment, "w", encoding="utf-8", newline="\n") as out:
                for row in self.row_source.query(table.name, self.fields, query_filter):
                    out.write(row)
                    out.write("\n")
                    rows += 1

            with open(segment, "rb") as src, open(staging_path, "ab") as dst:
                shutil.copyfileobj(src, dst)
        finally:
            segment.unlink(missing_ok=True)

        return rows
