from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path

from cdr_extraction.errors import InvalidWindow
from cdr_extraction.packed_date import PackedTimestamp


@dataclass(frozen=True)
class ExtractionWindow:
    """Half-open extraction window [start, end)."""
    start: PackedTimestamp
    end: PackedTimestamp

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise InvalidWindow(f"Window start {self.start} must be before end {self.end}")

    @property
    def last_instant(self) -> PackedTimestamp:
        """Latest second still inside the window."""
        return self.end.add_seconds(-1)

    def __str__(self) -> str:
        return f"[{self.start}, {self.end})"


class TableRole(str, Enum):
    AUTHORITATIVE = "authoritative"
    SUPPLEMENTARY = "supplementary"


@dataclass(frozen=True)
class TableReference:
    """
    One per-day source table, named <prefix><YYYYMMDD>.

    Existence is not checked up front; the query against it decides.
    """
    prefix: str
    table_date: date
    role: TableRole

    @property
    def name(self) -> str:
        return f"{self.prefix}{self.table_date:%Y%m%d}"

    @property
    def is_authoritative(self) -> bool:
        return self.role is TableRole.AUTHORITATIVE


class TableStatus(str, Enum):
    LOADED = "loaded"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TableOutcome:
    table: TableReference
    status: TableStatus
    rows: int = 0
    error: str | None = None


@dataclass(frozen=True)
class RunContext:
    """Per-run context."""
    run_id: str
    window: ExtractionWindow


@dataclass(frozen=True)
class ExtractionReport:
    """Result of a successful run."""
    window: ExtractionWindow
    artifact_path: Path
    outcomes: list[TableOutcome] = field(default_factory=list)

    @property
    def rows_total(self) -> int:
        return sum(o.rows for o in self.outcomes)


@dataclass(frozen=True)
class PlannedQuery:
    """A rendered query for one candidate table (dry runs)."""
    table: TableReference
    sql: str
