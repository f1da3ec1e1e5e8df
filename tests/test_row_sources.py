import subprocess

import duckdb
import pytest

from cdr_extraction import row_sources
from cdr_extraction.domain import ExtractionWindow
from cdr_extraction.errors import RowSourceError, RowSourceErrorKind
from cdr_extraction.packed_date import PackedTimestamp, TimeEncoding
from cdr_extraction.query_filter import QueryFilter
from cdr_extraction.row_sources import DuckDBRowSource, MySQLClientRowSource, format_row

WINDOW = ExtractionWindow(PackedTimestamp.parse("20130423164500"), PackedTimestamp.parse("20130423170000"))
DATETIME_FILTER = QueryFilter.for_window("end_time", WINDOW, TimeEncoding.DATETIME)
EPOCH_FILTER = QueryFilter.for_window("end_epoch", WINDOW, TimeEncoding.EPOCH)


@pytest.fixture
def switch_db(tmp_path):
    path = tmp_path / "switch.duckdb"
    conn = duckdb.connect(str(path))
    conn.execute("CREATE TABLE cdr20130423 (end_time VARCHAR, end_epoch BIGINT, caller VARCHAR, duration INTEGER)")
    conn.execute(
        "INSERT INTO cdr20130423 VALUES "
        "('20130423164459', 1366735499, '5551000', 10), "
        "('20130423164500', 1366735500, '5551001', 20), "
        "('20130423165959', 1366736399, NULL, 30), "
        "('20130423170000', 1366736400, '5551003', 40)"
    )
    conn.close()
    return str(path)


class TestDuckDBRowSource:
    def test_returns_tab_separated_rows_inside_window(self, switch_db):
        with DuckDBRowSource(database=switch_db) as source:
            rows = list(source.query("cdr20130423", ["caller", "duration"], DATETIME_FILTER))
        assert sorted(rows) == ["5551001\t20", "NULL\t30"]

    def test_epoch_encoding(self, switch_db):
        with DuckDBRowSource(database=switch_db) as source:
            rows = list(source.query("cdr20130423", ["end_time"], EPOCH_FILTER))
        assert sorted(rows) == ["20130423164500", "20130423165959"]

    def test_missing_table(self, switch_db):
        with DuckDBRowSource(database=switch_db) as source:
            with pytest.raises(RowSourceError) as exc_info:
                list(source.query("cdr20130424", ["*"], DATETIME_FILTER))
        assert exc_info.value.kind is RowSourceErrorKind.MISSING_TABLE
        assert exc_info.value.table == "cdr20130424"

    def test_unknown_column_is_malformed(self, switch_db):
        with DuckDBRowSource(database=switch_db) as source:
            with pytest.raises(RowSourceError) as exc_info:
                list(source.query("cdr20130423", ["no_such_column"], DATETIME_FILTER))
        assert exc_info.value.kind is RowSourceErrorKind.MALFORMED_QUERY

    def test_requires_context_manager(self, switch_db):
        source = DuckDBRowSource(database=switch_db)
        with pytest.raises(RuntimeError, match="not connected"):
            list(source.query("cdr20130423", ["*"], DATETIME_FILTER))

    def test_missing_database_file(self, tmp_path):
        path = tmp_path / "gone.duckdb"
        with pytest.raises(RowSourceError, match="Could not open DuckDB database") as exc_info:
            with DuckDBRowSource(database=str(path)):
                pass
        assert exc_info.value.kind is RowSourceErrorKind.EXECUTION
        assert exc_info.value.exit_code == 1
        assert not path.exists()

    def test_datetime_bounds_against_timestamp_column_are_malformed(self, tmp_path):
        path = str(tmp_path / "typed.duckdb")
        conn = duckdb.connect(path)
        conn.execute("CREATE TABLE cdr20130423 (end_time TIMESTAMP, caller VARCHAR)")
        conn.execute("INSERT INTO cdr20130423 VALUES (TIMESTAMP '2013-04-23 16:50:00', '5551001')")
        conn.close()

        with DuckDBRowSource(database=path) as source:
            with pytest.raises(RowSourceError) as exc_info:
                list(source.query("cdr20130423", ["caller"], DATETIME_FILTER))
        assert exc_info.value.kind is RowSourceErrorKind.MALFORMED_QUERY

    def test_slow_query_times_out_and_connection_stays_usable(self, switch_db):
        conn = duckdb.connect(switch_db)
        conn.execute(
            "CREATE VIEW cdr20130424 AS "
            "SELECT '20130423165000' AS end_time, sum(a.range * b.range) AS total "
            "FROM range(1000000000) a, range(1000000000) b"
        )
        conn.close()

        with DuckDBRowSource(database=switch_db, timeout_seconds=0.2) as source:
            with pytest.raises(RowSourceError) as exc_info:
                list(source.query("cdr20130424", ["total"], DATETIME_FILTER))
            rows = list(source.query("cdr20130423", ["caller"], DATETIME_FILTER))

        assert exc_info.value.kind is RowSourceErrorKind.TIMEOUT
        assert exc_info.value.table == "cdr20130424"
        assert sorted(rows) == ["5551001", "NULL"]


def test_format_row_escapes_like_mysql_batch_mode():
    assert format_row(["a\tb", None, 3, "line\nbreak", "back\\slash"]) == "a\\tb\tNULL\t3\tline\\nbreak\tback\\\\slash"


class TestMySQLClientRowSource:
    @pytest.fixture
    def fake_run(self, monkeypatch):
        calls = []

        def install(returncode=0, stdout="", stderr="", raises=None):
            def run(cmd, **kwargs):
                calls.append((cmd, kwargs))
                if raises is not None:
                    raise raises
                return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

            monkeypatch.setattr(row_sources.subprocess, "run", run)
            return calls

        return install

    def _source(self, **kwargs):
        return MySQLClientRowSource(database="switch", user="reader", password="s3cret", **kwargs)

    def test_runs_batch_client_and_splits_rows(self, fake_run):
        calls = fake_run(stdout="5551001\t20\n5551002\t30\n")
        rows = list(self._source(timeout_seconds=5).query("cdr20130423", ["caller", "duration"], DATETIME_FILTER))

        assert rows == ["5551001\t20", "5551002\t30"]
        cmd, kwargs = calls[0]
        assert cmd[:3] == ["mysql", "--batch", "--skip-column-names"]
        assert cmd[-3:] == [
            "-e",
            "SELECT caller, duration FROM cdr20130423 "
            "WHERE end_time >= '20130423164500' AND end_time < '20130423170000'",
            "switch",
        ]
        assert "s3cret" not in cmd
        assert kwargs["env"]["MYSQL_PWD"] == "s3cret"
        assert kwargs["timeout"] == 5

    @pytest.mark.parametrize(
        "stderr, kind",
        [
            ("ERROR 1146 (42S02) at line 1: Table 'switch.cdr20130424' doesn't exist", RowSourceErrorKind.MISSING_TABLE),
            ("ERROR 1064 (42000) at line 1: You have an error in your SQL syntax", RowSourceErrorKind.MALFORMED_QUERY),
            ("ERROR 1054 (42S22) at line 1: Unknown column 'end_time' in 'where clause'", RowSourceErrorKind.MALFORMED_QUERY),
            ("ERROR 2003 (HY000): Can't connect to MySQL server on 'localhost'", RowSourceErrorKind.EXECUTION),
        ],
    )
    def test_classifies_client_errors(self, fake_run, stderr, kind):
        fake_run(returncode=1, stderr=stderr)
        with pytest.raises(RowSourceError) as exc_info:
            self._source().query("cdr20130424", ["*"], DATETIME_FILTER)
        assert exc_info.value.kind is kind
        assert exc_info.value.returncode == 1
        assert exc_info.value.exit_code == 1

    def test_timeout(self, fake_run):
        fake_run(raises=subprocess.TimeoutExpired(["mysql"], 5))
        with pytest.raises(RowSourceError) as exc_info:
            self._source(timeout_seconds=5).query("cdr20130423", ["*"], DATETIME_FILTER)
        assert exc_info.value.kind is RowSourceErrorKind.TIMEOUT

    def test_missing_client_binary(self, fake_run):
        fake_run(raises=FileNotFoundError("mysql"))
        with pytest.raises(RowSourceError) as exc_info:
            self._source().query("cdr20130423", ["*"], DATETIME_FILTER)
        assert exc_info.value.kind is RowSourceErrorKind.EXECUTION
