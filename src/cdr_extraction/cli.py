"""
Command-line interface for the CDR extractor.

`extract` is meant for cron: silent on success, a one-line message on
stderr and a non-zero exit status on failure. `plan` prints the queries a
run would issue without touching the database or the output directory.
"""

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Optional

import typer

from core.settings import DEFAULT_CONFIG_PATH, build_logging_config
from cdr_extraction.config import ExtractionSpec, load_extraction_spec
from cdr_extraction.errors import CdrExtractionError, InvalidWindow
from cdr_extraction.orchestrator import build_runner
from cdr_extraction.utils import parse_field_list

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="cdr-extract",
    help="Extract call-detail records from per-day switch tables into compressed window files.",
    add_completion=False,
)

ConfigOption = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="YAML extraction config")
OutputDirOption = typer.Option(None, "--output-dir", "-o", help="Directory for published files")
StartOption = typer.Option(None, "--start", help="Window start, YYYYMMDDHHMMSS (needs --end)")
EndOption = typer.Option(None, "--end", help="Window end (exclusive), YYYYMMDDHHMMSS (needs --start)")
YesterdayOption = typer.Option(False, "--yesterday", help="Extract the whole previous UTC day")
TimeFieldOption = typer.Option(None, "--time-field", help="Column the window is applied to")
TimeEncodingOption = typer.Option(None, "--time-encoding", help="epoch | epoch1000 | datetime")
UtcOffsetOption = typer.Option(None, "--utc-offset", help="Signed hours between the record clock and UTC")
FieldsOption = typer.Option(None, "--fields", help="Comma-separated column list (default: all)")
TablePrefixOption = typer.Option(None, "--table-prefix", help="Per-day table name prefix")
TimeoutOption = typer.Option(None, "--timeout", help="Per-table query timeout in seconds")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr")
LogFileOption = typer.Option(None, "--log-file", help="Also log to this rotating file")


def _load_spec(
    config: Path,
    *,
    output_dir: Optional[Path],
    time_field: Optional[str],
    time_encoding: Optional[str],
    utc_offset: Optional[int],
    fields: Optional[str],
    table_prefix: Optional[str],
    timeout: Optional[float],
) -> ExtractionSpec:
    spec = load_extraction_spec(config)
    return spec.with_overrides(
        output_dir=output_dir,
        time_field=time_field,
        time_encoding=time_encoding,
        utc_offset_hours=utc_offset,
        fields=parse_field_list(fields),
        table_prefix=table_prefix,
        query_timeout_seconds=timeout,
    )


def _check_window_options(start: Optional[str], end: Optional[str], yesterday: bool) -> None:
    if (start is None) != (end is None):
        raise InvalidWindow("--start and --end must be given together")
    if yesterday and start is not None:
        raise InvalidWindow("--yesterday cannot be combined with --start/--end")


def _fail(error: CdrExtractionError) -> typer.Exit:
    typer.echo(f"cdr-extract: {error}", err=True)
    return typer.Exit(code=error.exit_code)


@app.command()
def extract(
    config: Path = ConfigOption,
    output_dir: Optional[Path] = OutputDirOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    yesterday: bool = YesterdayOption,
    time_field: Optional[str] = TimeFieldOption,
    time_encoding: Optional[str] = TimeEncodingOption,
    utc_offset: Optional[int] = UtcOffsetOption,
    fields: Optional[str] = FieldsOption,
    table_prefix: Optional[str] = TablePrefixOption,
    timeout: Optional[float] = TimeoutOption,
    verbose: bool = VerboseOption,
    log_file: Optional[Path] = LogFileOption,
) -> None:
    """Run one extraction and publish the compressed window file."""
    dictConfig(build_logging_config(verbose=verbose, log_file=log_file))

    try:
        _check_window_options(start, end, yesterday)
        spec = _load_spec(
            config,
            output_dir=output_dir,
            time_field=time_field,
            time_encoding=time_encoding,
            utc_offset=utc_offset,
            fields=fields,
            table_prefix=table_prefix,
            timeout=timeout,
        )
        row_source = spec.source.build(spec.query_timeout_seconds)
        runner = build_runner(spec, row_source, start=start, end=end, yesterday=yesterday)
        # Window errors must surface before the database is opened.
        window = runner.resolve_window()
        with row_source:
            report = runner.run(window=window)
    except CdrExtractionError as e:
        raise _fail(e) from e

    logger.debug("Wrote %s rows to %s", report.rows_total, report.artifact_path)


@app.command()
def plan(
    config: Path = ConfigOption,
    start: Optional[str] = StartOption,
    end: Optional[str] = EndOption,
    yesterday: bool = YesterdayOption,
    time_field: Optional[str] = TimeFieldOption,
    time_encoding: Optional[str] = TimeEncodingOption,
    utc_offset: Optional[int] = UtcOffsetOption,
    fields: Optional[str] = FieldsOption,
    table_prefix: Optional[str] = TablePrefixOption,
    verbose: bool = VerboseOption,
) -> None:
    """Print the per-table queries an extraction would issue."""
    dictConfig(build_logging_config(verbose=verbose))

    try:
        _check_window_options(start, end, yesterday)
        spec = _load_spec(
            config,
            output_dir=None,
            time_field=time_field,
            time_encoding=time_encoding,
            utc_offset=utc_offset,
            fields=fields,
            table_prefix=table_prefix,
            timeout=None,
        )
        # The row source is never queried during planning, so it is not opened.
        runner = build_runner(spec, spec.source.build(), start=start, end=end, yesterday=yesterday)
        planned = runner.plan()
    except CdrExtractionError as e:
        raise _fail(e) from e

    for query in planned:
        typer.echo(f"{query.table.role.value}\t{query.table.name}\t{query.sql}")


def main() -> None:
    app()
