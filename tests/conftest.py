from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Sequence

import pytest

from cdr_extraction.errors import FinalizationFailed, RowSourceError, RowSourceErrorKind
from cdr_extraction.output_layout import OutputLayout
from cdr_extraction.query_filter import QueryFilter


@dataclass
class FakeRowSource:
    """
    In-memory per-day tables. Each row is (time_value, line); a row is
    returned when lower <= time_value < upper, like the real predicate.
    """
    tables: dict[str, list[tuple[object, str]]] = field(default_factory=dict)
    failures: dict[str, RowSourceErrorKind] = field(default_factory=dict)
    calls: list[tuple[str, tuple[str, ...], QueryFilter]] = field(default_factory=list)

    def query(self, table: str, fields: Sequence[str], query_filter: QueryFilter) -> Iterator[str]:
        self.calls.append((table, tuple(fields), query_filter))
        if table in self.failures:
            raise RowSourceError(f"simulated {self.failures[table].value}", kind=self.failures[table], table=table)
        if table not in self.tables:
            raise RowSourceError(f"Table '{table}' doesn't exist", kind=RowSourceErrorKind.MISSING_TABLE, table=table)
        return iter([
            line for value, line in self.tables[table]
            if query_filter.lower <= value < query_filter.upper
        ])

    @property
    def queried_tables(self) -> list[str]:
        return [c[0] for c in self.calls]


class FlakyRowSource(FakeRowSource):
    """Yields the first row of a table, then fails."""

    def __init__(self, flaky_table: str, kind: RowSourceErrorKind, **kwargs):
        super().__init__(**kwargs)
        self.flaky_table = flaky_table
        self.kind = kind

    def query(self, table, fields, query_filter):
        rows = super().query(table, fields, query_filter)
        if table != self.flaky_table:
            return rows
        return self._fail_after_first(table, rows)

    def _fail_after_first(self, table, rows):
        yield next(rows)
        raise RowSourceError("connection dropped", kind=self.kind, table=table)


class FailingArchiver:
    suffix = ".gz"

    def __init__(self, returncode: int = 3):
        self.returncode = returncode

    def compress(self, source: Path) -> Path:
        # Leave a half-written artifact behind, as a crashing tool would.
        source.with_name(source.name + self.suffix).write_bytes(b"\x1f\x8b")
        raise FinalizationFailed("gzip exited with status 3", returncode=self.returncode, command=["gzip", str(source)])


@pytest.fixture
def layout(tmp_path: Path) -> OutputLayout:
    return OutputLayout(output_root=tmp_path / "out", file_prefix="cdr")
