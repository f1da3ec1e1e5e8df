import re
from dataclasses import dataclass
from typing import Sequence

from cdr_extraction.domain import ExtractionWindow
from cdr_extraction.errors import InvalidFormat
from cdr_extraction.packed_date import FilterValue, TimeEncoding

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_identifier(name: str, what: str = "identifier") -> str:
    if not IDENTIFIER_PATTERN.match(name):
        raise InvalidFormat(f"Invalid {what} '{name}'. Must start with a letter or underscore, "
                            "followed by letters, digits, or underscores.")
    return name


def render_field_list(fields: Sequence[str]) -> str:
    if not fields:
        raise InvalidFormat("Field projection list is empty")
    if list(fields) == ["*"]:
        return "*"
    return ", ".join(validate_identifier(f, "field name") for f in fields)


def _sql_literal(value: FilterValue) -> str:
    if isinstance(value, int):
        return str(value)
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class QueryFilter:
    """
    `field >= lower AND field < upper`, with both bounds rendered in the
    encoding the store uses for the time field.
    """
    field: str
    encoding: TimeEncoding
    lower: FilterValue
    upper: FilterValue

    @classmethod
    def for_window(cls, field: str, window: ExtractionWindow, encoding: TimeEncoding) -> "QueryFilter":
        validate_identifier(field, "time field")
        return cls(
            field=field,
            encoding=encoding,
            lower=window.start.to_filter_value(encoding),
            upper=window.end.to_filter_value(encoding),
        )

    @property
    def params(self) -> tuple[FilterValue, FilterValue]:
        return (self.lower, self.upper)

    def parameterized_sql(self) -> str:
        return f"{self.field} >= ? AND {self.field} < ?"

    def to_sql(self) -> str:
        return f"{self.field} >= {_sql_literal(self.lower)} AND {self.field} < {_sql_literal(self.upper)}"


def build_select(table: str, fields: Sequence[str], query_filter: QueryFilter, *, parameterized: bool = False) -> str:
    validate_identifier(table, "table name")
    predicate = query_filter.parameterized_sql() if parameterized else query_filter.to_sql()
    return f"SELECT {render_field_list(fields)} FROM {table} WHERE {predicate}"
