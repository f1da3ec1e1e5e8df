import logging
import os
import re
import subprocess
import threading
from datetime import datetime
from typing import Any, Iterator, Protocol, Sequence

import duckdb

from cdr_extraction.errors import RowSourceError, RowSourceErrorKind
from cdr_extraction.query_filter import QueryFilter, build_select

logger = logging.getLogger(__name__)

NULL_TOKEN = "NULL"

# mysql client error codes
MYSQL_NO_SUCH_TABLE = 1146
MYSQL_MALFORMED_QUERY_CODES = frozenset({1054, 1064})  # unknown column, syntax error
MYSQL_ERROR_PATTERN = re.compile(r"ERROR (\d+)")


class RowSource(Protocol):
    def query(self, table: str, fields: Sequence[str], query_filter: QueryFilter) -> Iterator[str]:
        """Yield tab-separated rows (no header, no trailing newline)."""
        ...


def format_value(value: Any) -> str:
    """Render a value the way the mysql batch client does."""
    if value is None:
        return NULL_TOKEN
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    text = str(value)
    return text.replace("\\", "\\\\").replace("\t", "\\t").replace("\n", "\\n")


def format_row(row: Sequence[Any]) -> str:
    return "\t".join(format_value(v) for v in row)


class DuckDBRowSource:
    """
    Row source backed by a DuckDB database holding the per-day tables.

    Use as a context manager; the connection lives for the whole run.
    """

    def __init__(
        self,
        *,
        database: str,
        read_only: bool = True,
        timeout_seconds: float | None = None,
        fetch_size: int = 10000,
    ):
        self._database = database
        self._read_only = read_only
        self._timeout_seconds = timeout_seconds
        self._fetch_size = fetch_size
        self._connection: duckdb.DuckDBPyConnection | None = None

    def __enter__(self) -> "DuckDBRowSource":
        if self._connection is not None:
            raise RuntimeError("Row source connection already open")
        try:
            self._connection = duckdb.connect(self._database, read_only=self._read_only)
        except duckdb.Error as e:
            raise RowSourceError(
                f"Could not open DuckDB database {self._database}: {e}",
                kind=RowSourceErrorKind.EXECUTION,
                table="<connect>",
            ) from e
        logger.debug("Row source connected. duckdb=%s read_only=%s", self._database, self._read_only)
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            raise RuntimeError("Row source is not connected; use it as a context manager")
        return self._connection

    def query(self, table: str, fields: Sequence[str], query_filter: QueryFilter) -> Iterator[str]:
        conn = self._require_connection()
        sql = build_select(table, fields, query_filter, parameterized=True)
        logger.debug("duckdb: %s %s", sql, query_filter.params)

        timer: threading.Timer | None = None
        if self._timeout_seconds is not None:
            timer = threading.Timer(self._timeout_seconds, conn.interrupt)
            timer.daemon = True
            timer.start()

        try:
            cursor = conn.execute(sql, list(query_filter.params))
            while True:
                batch = cursor.fetchmany(self._fetch_size)
                if not batch:
                    break
                for row in batch:
                    yield format_row(row)
        except duckdb.CatalogException as e:
            raise RowSourceError(str(e), kind=RowSourceErrorKind.MISSING_TABLE, table=table) from e
        except (duckdb.ParserException, duckdb.BinderException) as e:
            raise RowSourceError(str(e), kind=RowSourceErrorKind.MALFORMED_QUERY, table=table) from e
        except (duckdb.ConversionException, duckdb.TypeMismatchException) as e:
            # The filter bounds do not fit the column type, so no table can answer it.
            raise RowSourceError(str(e), kind=RowSourceErrorKind.MALFORMED_QUERY, table=table) from e
        except duckdb.InterruptException as e:
            raise RowSourceError(
                f"Query exceeded {self._timeout_seconds}s", kind=RowSourceErrorKind.TIMEOUT, table=table
            ) from e
        except duckdb.Error as e:
            raise RowSourceError(str(e), kind=RowSourceErrorKind.EXECUTION, table=table) from e
        finally:
            if timer is not None:
                timer.cancel()


class MySQLClientRowSource:
    """
    Row source that shells out to the mysql batch client, which already
    prints tab-separated rows without a header.
    """

    def __init__(
        self,
        *,
        database: str,
        host: str = "localhost",
        port: int = 3306,
        user: str | None = None,
        password: str | None = None,
        client_binary: str = "mysql",
        timeout_seconds: float | None = None,
    ):
        self.database = database
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.client_binary = client_binary
        self.timeout_seconds = timeout_seconds

    def __enter__(self) -> "MySQLClientRowSource":
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        return None

    def build_command(self, sql: str) -> list[str]:
        cmd = [self.client_binary, "--batch", "--skip-column-names", "-h", self.host, "-P", str(self.port)]
        if self.user:
            cmd += ["-u", self.user]
        cmd += ["-e", sql, self.database]
        return cmd

    def query(self, table: str, fields: Sequence[str], query_filter: QueryFilter) -> Iterator[str]:
        sql = build_select(table, fields, query_filter)
        cmd = self.build_command(sql)
        logger.debug("mysql: %s", sql)

        env = dict(os.environ)
        if self.password:
            env["MYSQL_PWD"] = self.password

        try:
            completed = subprocess.run(
                cmd, capture_output=True, text=True, env=env, timeout=self.timeout_seconds, check=False
            )
        except subprocess.TimeoutExpired as e:
            raise RowSourceError(
                f"mysql query exceeded {self.timeout_seconds}s", kind=RowSourceErrorKind.TIMEOUT, table=table
            ) from e
        except OSError as e:
            raise RowSourceError(
                f"Could not run {self.client_binary}: {e}", kind=RowSourceErrorKind.EXECUTION, table=table
            ) from e

        if completed.returncode != 0:
            raise self._classify_failure(table, completed.returncode, completed.stderr)

        return iter(completed.stdout.splitlines())

    @staticmethod
    def _classify_failure(table: str, returncode: int, stderr: str) -> RowSourceError:
        message = stderr.strip() or f"mysql exited with status {returncode}"
        match = MYSQL_ERROR_PATTERN.search(stderr)
        code = int(match.group(1)) if match else None

        if code == MYSQL_NO_SUCH_TABLE:
            kind = RowSourceErrorKind.MISSING_TABLE
        elif code in MYSQL_MALFORMED_QUERY_CODES:
            kind = RowSourceErrorKind.MALFORMED_QUERY
        else:
            kind = RowSourceErrorKind.EXECUTION
        return RowSourceError(message, kind=kind, table=table, returncode=returncode)
