import logging
from datetime import timedelta
from typing import Sequence

from cdr_extraction.domain import ExtractionWindow, TableReference, TableRole
from cdr_extraction.query_filter import validate_identifier

logger = logging.getLogger(__name__)


class TableSetPlanner:
    """
    Plans which per-day tables to query for a window.

    The switch names tables by its own local midnight, which need not agree
    with the clock that stamps the records, and the switchover itself can
    slip by a few minutes. Rather than guess the one right table, plan every
    day in [date(start) - 1, date(last instant) + 1], ascending. The first
    table is authoritative; the rest are supplementary.
    """

    def __init__(self, table_prefix: str, skew_days: int = 1):
        # The prefix is concatenated with a date, so the full name must still be an identifier.
        validate_identifier(f"{table_prefix}00000000", "table prefix")
        self.table_prefix = table_prefix
        self.skew_days = skew_days

    def plan_tables(self, window: ExtractionWindow) -> Sequence[TableReference]:
        first_day = window.start.date - timedelta(days=self.skew_days)
        last_day = window.last_instant.date + timedelta(days=self.skew_days)

        plan: list[TableReference] = []
        day = first_day
        while day <= last_day:
            role = TableRole.AUTHORITATIVE if not plan else TableRole.SUPPLEMENTARY
            plan.append(TableReference(prefix=self.table_prefix, table_date=day, role=role))
            day += timedelta(days=1)

        logger.debug("Planned %s tables for window %s: %s", len(plan), window, [t.name for t in plan])
        return plan
