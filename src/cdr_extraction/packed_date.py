import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Union

from cdr_extraction.errors import InvalidFormat

PACKED_DATE_PATTERN = re.compile(r"^\d{14}$")

FilterValue = Union[str, int]


class TimeEncoding(str, Enum):
    """How the switch stores the time field the window filter is applied to."""
    DATETIME = "datetime"
    EPOCH = "epoch"
    EPOCH_MILLIS = "epoch1000"

    @classmethod
    def parse(cls, name: "str | TimeEncoding") -> "TimeEncoding":
        if isinstance(name, TimeEncoding):
            return name
        try:
            return cls(name)
        except ValueError:
            allowed = ", ".join(e.value for e in cls)
            raise InvalidFormat(f"Unknown time encoding '{name}'. Expected one of: {allowed}") from None


@dataclass(frozen=True, order=True)
class PackedTimestamp:
    """
    A UTC instant at one-second resolution, rendered as YYYYMMDDHHMMSS.

    `value` is always a naive datetime in UTC with microseconds dropped, so
    ordering and equality follow the calendar.
    """
    value: datetime

    def __post_init__(self) -> None:
        if self.value.tzinfo is not None or self.value.microsecond:
            raise InvalidFormat(f"PackedTimestamp needs a naive UTC datetime at second precision, got {self.value!r}")

    @classmethod
    def parse(cls, text: str) -> "PackedTimestamp":
        if not isinstance(text, str) or not PACKED_DATE_PATTERN.match(text):
            raise InvalidFormat(f"Packed date must be exactly 14 digits (YYYYMMDDHHMMSS), got {text!r}")
        try:
            return cls(
                datetime(
                    int(text[0:4]),
                    int(text[4:6]),
                    int(text[6:8]),
                    int(text[8:10]),
                    int(text[10:12]),
                    int(text[12:14]),
                )
            )
        except ValueError as e:
            raise InvalidFormat(f"Packed date {text!r} is out of calendar range: {e}") from e

    @classmethod
    def from_datetime(cls, instant: datetime) -> "PackedTimestamp":
        """Aware datetimes are converted to UTC; naive ones are taken as UTC."""
        if instant.tzinfo is not None:
            instant = instant.astimezone(timezone.utc).replace(tzinfo=None)
        return cls(instant.replace(microsecond=0))

    @classmethod
    def coerce(cls, value: "str | datetime | PackedTimestamp") -> "PackedTimestamp":
        if isinstance(value, PackedTimestamp):
            return value
        if isinstance(value, datetime):
            return cls.from_datetime(value)
        return cls.parse(value)

    def __str__(self) -> str:
        v = self.value
        return f"{v.year:04d}{v.month:02d}{v.day:02d}{v.hour:02d}{v.minute:02d}{v.second:02d}"

    @property
    def date(self) -> date:
        return self.value.date()

    @property
    def epoch_seconds(self) -> int:
        return int(self.value.replace(tzinfo=timezone.utc).timestamp())

    def add_seconds(self, offset_seconds: int) -> "PackedTimestamp":
        # timedelta arithmetic normalizes overflow across minutes, days, months and years
        return PackedTimestamp(self.value + timedelta(seconds=offset_seconds))

    def truncate_to_quarter_hour(self) -> "PackedTimestamp":
        v = self.value
        return PackedTimestamp(v.replace(minute=v.minute - v.minute % 15, second=0))

    def truncate_to_day(self) -> "PackedTimestamp":
        return PackedTimestamp(datetime.combine(self.value.date(), datetime.min.time()))

    def to_filter_value(self, encoding: TimeEncoding) -> FilterValue:
        if encoding is TimeEncoding.DATETIME:
            return str(self)
        if encoding is TimeEncoding.EPOCH:
            return self.epoch_seconds
        if encoding is TimeEncoding.EPOCH_MILLIS:
            return self.epoch_seconds * 1000
        raise InvalidFormat(f"Unhandled time encoding: {encoding!r}")


def truncate_to_quarter_hour(instant: "str | datetime | PackedTimestamp") -> PackedTimestamp:
    return PackedTimestamp.coerce(instant).truncate_to_quarter_hour()


def add_seconds(packed: "str | datetime | PackedTimestamp", offset_seconds: int) -> PackedTimestamp:
    return PackedTimestamp.coerce(packed).add_seconds(offset_seconds)


def to_filter_value(packed: "str | PackedTimestamp", encoding: "str | TimeEncoding") -> FilterValue:
    """
    datetime  -> the packed string unchanged
    epoch     -> UTC seconds since the epoch
    epoch1000 -> UTC milliseconds since the epoch
    """
    return PackedTimestamp.coerce(packed).to_filter_value(TimeEncoding.parse(encoding))
