import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_field_list(value: str | None) -> list[str] | None:
    """'a, b ,c' -> ['a', 'b', 'c']; None or blank -> None."""
    if value is None or not value.strip():
        return None
    return [part.strip() for part in value.split(",") if part.strip()]
