import logging
from dataclasses import dataclass
from datetime import datetime

from core.settings import PROBE_INTERVAL_SECONDS, SECONDS_PER_DAY, SECONDS_PER_HOUR
from cdr_extraction.domain import ExtractionWindow
from cdr_extraction.errors import InvalidWindow
from cdr_extraction.packed_date import PackedTimestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowRequest:
    """What the caller asked for. Explicit bounds win over `yesterday`, which wins over the periodic default."""
    start: str | None = None
    end: str | None = None
    yesterday: bool = False
    utc_offset_hours: int = 0
    probe_interval_seconds: int = PROBE_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if (self.start is None) != (self.end is None):
            raise InvalidWindow("Explicit window needs both start and end, got only one")
        if self.probe_interval_seconds <= 0 or self.probe_interval_seconds % PROBE_INTERVAL_SECONDS:
            raise InvalidWindow(
                f"Probe interval must be a positive multiple of {PROBE_INTERVAL_SECONDS}s, "
                f"got {self.probe_interval_seconds}"
            )

    @property
    def is_explicit(self) -> bool:
        return self.start is not None and self.end is not None


class WindowResolver:
    def __init__(self, request: WindowRequest, *, logger: logging.Logger = logger):
        self.request = request
        self.logger = logger

    def resolve(self, now: datetime) -> ExtractionWindow:
        req = self.request

        if req.is_explicit:
            window = ExtractionWindow(PackedTimestamp.parse(req.start), PackedTimestamp.parse(req.end))
            mode = "explicit"
        elif req.yesterday:
            current = PackedTimestamp.from_datetime(now)
            window = ExtractionWindow(
                start=current.add_seconds(-SECONDS_PER_DAY).truncate_to_day(),
                end=current.truncate_to_day(),
            )
            mode = "yesterday"
        else:
            shifted = PackedTimestamp.from_datetime(now).add_seconds(req.utc_offset_hours * SECONDS_PER_HOUR)
            window = ExtractionWindow(
                start=shifted.add_seconds(-req.probe_interval_seconds).truncate_to_quarter_hour(),
                end=shifted.truncate_to_quarter_hour(),
            )
            mode = "periodic"

        self.logger.debug("Resolved %s window %s (now=%s, offset=%+dh)", mode, window, now, req.utc_offset_hours)
        return window


def resolve_window(now: datetime, request: WindowRequest) -> ExtractionWindow:
    return WindowResolver(request).resolve(now)
