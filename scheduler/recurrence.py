"""Expansion of a recurrence rule into concrete occurrences."""
import logging
from datetime import datetime, timezone
from typing import List

from dateutil.relativedelta import relativedelta

from scheduler.errors import IncompleteRecurrenceSpec
from scheduler.models import RECURRENCE_TYPES, Occurrence
from scheduler.time_normalizer import (
    TimeZoneLike,
    format_utc,
    render_local,
    resolve_timezone,
)

logger = logging.getLogger(__name__)

STEPS = {
    'daily': relativedelta(days=1),
    'weekly': relativedelta(weeks=1),
    'monthly': relativedelta(months=1)
}


def build_occurrence(
    start_utc: datetime,
    end_utc: datetime,
    time_zone: str
) -> Occurrence:
    """Create an Occurrence with local renderings of both instants."""
    return Occurrence(
        start_utc=start_utc,
        end_utc=end_utc,
        start_local=render_local(start_utc, time_zone),
        end_local=render_local(end_utc, time_zone),
        time_zone=time_zone
    )


class RecurrenceExpander:
    """Expands (kind, boundary) rules against a first occurrence."""

    def __init__(self, include_first_occurrence: bool = False):
        """
        Args:
            include_first_occurrence: Emit the first occurrence even when
                it is not before the boundary; the boundary then only
                bounds the repeats
        """
        self.include_first_occurrence = include_first_occurrence

    def expand(
        self,
        start_utc: datetime,
        end_utc: datetime,
        recurrence_type: str,
        boundary_utc: datetime,
        time_zone: TimeZoneLike
    ) -> List[Occurrence]:
        """
        Produce the ordered occurrences of a recurring event.

        A (start, end) cursor is kept in civil time in ``time_zone`` and
        both ends move forward by one calendar unit per step, so the local
        wall-clock time survives daylight-saving transitions. Monthly steps
        clamp to the end of shorter months and the clamped day carries
        forward (Jan 31, Feb 29, Mar 29). Start and end clamp independently,
        so an occurrence may end at or before its start; it is still
        returned and rejected when processed.

        Args:
            start_utc: First occurrence start
            end_utc: First occurrence end, later than start_utc
            recurrence_type: 'daily', 'weekly' or 'monthly'
            boundary_utc: Exclusive upper bound for starts and ends
            time_zone: Zone the event is scheduled in

        Returns:
            List of Occurrence objects in chronological order

        Raises:
            IncompleteRecurrenceSpec: If recurrence_type is unknown
        """
        if recurrence_type not in STEPS:
            raise IncompleteRecurrenceSpec(
                f"recurrence_type must be one of {', '.join(RECURRENCE_TYPES)}",
                recurrence_type=recurrence_type
            )

        tz = resolve_timezone(time_zone)
        zone_name = time_zone if isinstance(time_zone, str) else str(tz)
        step = STEPS[recurrence_type]
        cur_start = start_utc.astimezone(tz)
        cur_end = end_utc.astimezone(tz)

        occurrences = []
        while True:
            start = cur_start.astimezone(timezone.utc)
            end = cur_end.astimezone(timezone.utc)
            if not (start < boundary_utc and end < boundary_utc):
                if not occurrences and self.include_first_occurrence:
                    occurrences.append(build_occurrence(start, end, zone_name))
                break
            occurrences.append(build_occurrence(start, end, zone_name))
            cur_start += step
            cur_end += step

        if not occurrences:
            logger.warning(
                f"Recurrence produced no occurrences: first occurrence "
                f"{format_utc(start_utc)}-{format_utc(end_utc)} is not before "
                f"boundary {format_utc(boundary_utc)}"
            )
        else:
            logger.info(
                f"Expanded {recurrence_type} recurrence into "
                f"{len(occurrences)} occurrences in {zone_name}"
            )
        return occurrences
