from enum import Enum

from core.settings import EXIT_FAILURE, EXIT_USAGE


class CdrExtractionError(Exception):
    """Base class for every failure the extractor reports."""
    exit_code: int = EXIT_FAILURE


class InvalidFormat(CdrExtractionError, ValueError):
    """Malformed packed date, encoding name, or identifier. Raised before any I/O."""
    exit_code = EXIT_USAGE


class InvalidWindow(CdrExtractionError, ValueError):
    """start >= end, or only one of start/end supplied."""
    exit_code = EXIT_USAGE


class RowSourceErrorKind(str, Enum):
    MISSING_TABLE = "missing_table"
    TIMEOUT = "timeout"
    MALFORMED_QUERY = "malformed_query"
    EXECUTION = "execution"


class RowSourceError(CdrExtractionError):
    """
    Raised by a row source. `kind` lets the merger tell an absent table apart
    from a query that can never succeed; `returncode` is the query tool's exit
    status when there is one.
    """

    def __init__(self, message: str, *, kind: RowSourceErrorKind, table: str, returncode: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.table = table
        self.returncode = returncode

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.returncode or EXIT_FAILURE


class AuthoritativeQueryFailed(CdrExtractionError):
    def __init__(self, cause: RowSourceError):
        super().__init__(f"Query on authoritative table '{cause.table}' failed ({cause.kind.value}): {cause}")
        self.cause = cause

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.cause.exit_code


class SupplementaryQueryFailed(CdrExtractionError):
    """Recorded per table by the merger; never propagates out of a run."""

    def __init__(self, cause: RowSourceError):
        super().__init__(f"Query on supplementary table '{cause.table}' failed ({cause.kind.value}): {cause}")
        self.cause = cause


class FinalizationFailed(CdrExtractionError):
    def __init__(self, message: str, *, returncode: int | None = None, command: list[str] | None = None):
        super().__init__(message)
        self.returncode = returncode
        self.command = command

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.returncode or EXIT_FAILURE
