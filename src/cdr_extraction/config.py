import logging
import os
from pathlib import Path
from typing import Annotated, Any, Literal, Self, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from core.settings import DEFAULT_OUTPUT_DIR, PROBE_INTERVAL_SECONDS
from cdr_extraction.archivers import Archiver, CommandArchiver, GzipArchiver
from cdr_extraction.errors import InvalidFormat
from cdr_extraction.packed_date import TimeEncoding
from cdr_extraction.query_filter import IDENTIFIER_PATTERN
from cdr_extraction.row_sources import DuckDBRowSource, MySQLClientRowSource

logger = logging.getLogger(__name__)


class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


class DuckDBSourceSpec(StrictBaseModel):
    kind: Literal["duckdb"]
    database: str
    read_only: bool = True

    def build(self, timeout_seconds: float | None = None) -> DuckDBRowSource:
        return DuckDBRowSource(database=self.database, read_only=self.read_only, timeout_seconds=timeout_seconds)


class MySQLSourceSpec(StrictBaseModel):
    kind: Literal["mysql"]
    database: str
    host: str = "localhost"
    port: int = 3306
    user: str | None = None
    password: str | None = None
    password_env: str | None = None  # name of an environment variable holding the password
    client_binary: str = "mysql"

    @model_validator(mode="after")
    def validate_spec(self) -> Self:
        if self.password is not None and self.password_env is not None:
            raise ValueError("Specify at most one of password and password_env")
        return self

    def build(self, timeout_seconds: float | None = None) -> MySQLClientRowSource:
        password = self.password
        if self.password_env is not None:
            password = os.getenv(self.password_env)
            if password is None:
                logger.warning(f"Password environment variable '{self.password_env}' is not set.")
        return MySQLClientRowSource(
            database=self.database,
            host=self.host,
            port=self.port,
            user=self.user,
            password=password,
            client_binary=self.client_binary,
            timeout_seconds=timeout_seconds,
        )


RowSourceSpec = Annotated[
    Union[DuckDBSourceSpec, MySQLSourceSpec],
    Field(discriminator="kind"),
]


class GzipArchiveSpec(StrictBaseModel):
    kind: Literal["gzip"] = "gzip"

    def build(self) -> Archiver:
        return GzipArchiver()


class CommandArchiveSpec(StrictBaseModel):
    kind: Literal["command"]
    command: list[str] = Field(default_factory=lambda: ["gzip", "-f"])
    suffix: str = ".gz"
    timeout_seconds: float | None = None

    @model_validator(mode="after")
    def validate_spec(self) -> Self:
        if not self.command:
            raise ValueError("Archive command must not be empty")
        if not self.suffix.startswith("."):
            raise ValueError(f"Archive suffix must start with '.', got '{self.suffix}'")
        return self

    def build(self) -> Archiver:
        return CommandArchiver(command=self.command, suffix=self.suffix, timeout_seconds=self.timeout_seconds)


ArchiveSpec = Annotated[
    Union[GzipArchiveSpec, CommandArchiveSpec],
    Field(discriminator="kind"),
]


class ExtractionSpec(StrictBaseModel):
    source: RowSourceSpec
    archive: ArchiveSpec = Field(default_factory=GzipArchiveSpec)

    output_dir: Annotated[Path, Field(strict=False)] = DEFAULT_OUTPUT_DIR
    file_prefix: str = "cdr"
    table_prefix: str = "cdr"

    time_field: str = "end_time"
    time_encoding: Annotated[TimeEncoding, Field(strict=False)] = TimeEncoding.DATETIME
    utc_offset_hours: int = Field(default=0, ge=-23, le=23)
    fields: list[str] = Field(default_factory=lambda: ["*"])

    probe_interval_seconds: int = PROBE_INTERVAL_SECONDS
    query_timeout_seconds: float | None = None

    @model_validator(mode="after")
    def validate_spec(self) -> Self:
        if not IDENTIFIER_PATTERN.match(self.time_field):
            raise ValueError(f"Invalid time field '{self.time_field}'")

        if not IDENTIFIER_PATTERN.match(f"{self.table_prefix}00000000"):
            raise ValueError(f"Invalid table prefix '{self.table_prefix}'")

        if not self.fields:
            raise ValueError("fields must not be empty; use ['*'] for all columns")
        if self.fields != ["*"]:
            for field_name in self.fields:
                if not IDENTIFIER_PATTERN.match(field_name):
                    raise ValueError(f"Invalid field name '{field_name}'. Must start with a letter or underscore, "
                                     "followed by letters, digits, or underscores.")
            if duplicates := {name for name in self.fields if self.fields.count(name) > 1}:
                raise ValueError(f"Duplicate field names: {duplicates}")

        if self.probe_interval_seconds <= 0 or self.probe_interval_seconds % PROBE_INTERVAL_SECONDS:
            raise ValueError(f"probe_interval_seconds must be a positive multiple of {PROBE_INTERVAL_SECONDS}")

        if self.query_timeout_seconds is not None and self.query_timeout_seconds <= 0:
            raise ValueError("query_timeout_seconds must be positive")

        return self

    @classmethod
    def from_mapping(cls, data: dict[str, Any], origin: str = "<config>") -> "ExtractionSpec":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidFormat(f"Invalid extraction config in {origin}: {e}") from e

    def with_overrides(self, **overrides: Any) -> "ExtractionSpec":
        """Apply command-line values on top of the file config. None means 'not given'."""
        given = {k: v for k, v in overrides.items() if v is not None}
        if not given:
            return self
        data = self.model_dump()
        data.update(given)
        return self.from_mapping(data, origin="command line")


def load_extraction_spec(file_path: Path) -> ExtractionSpec:
    if not file_path.exists():
        raise InvalidFormat(f"Config file not found: {file_path}")

    with open(file_path, "r") as file:
        try:
            config_yaml = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise InvalidFormat(f"Could not parse YAML in {file_path}: {e}") from e

    if not isinstance(config_yaml, dict):
        raise InvalidFormat(f"Config file {file_path} must contain a mapping at the top level")

    return ExtractionSpec.from_mapping(config_yaml, origin=str(file_path))
