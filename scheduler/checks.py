"""Per-creator overlap detection and weekly quota enforcement."""
import logging
from datetime import datetime, timezone
from typing import FrozenSet, Optional

from dateutil.relativedelta import SU, relativedelta

from scheduler.errors import Overlapping, WeeklyLimitReached
from scheduler.models import Event, Occurrence
from scheduler.time_normalizer import format_utc, resolve_timezone
from storage.base import EventStore

logger = logging.getLogger(__name__)


class OverlapChecker:
    """Finds active events of the same creator that intersect an interval."""

    def __init__(self, store: EventStore):
        self.store = store

    def find_conflict(
        self,
        creator_email: str,
        start: datetime,
        end: datetime
    ) -> Optional[Event]:
        """
        Return the first conflicting active event, or None.

        Intervals are half-open, so an event ending exactly at ``start``
        does not conflict.
        """
        return self.store.find_overlapping(creator_email, start, end)

    def check(self, creator_email: str, start: datetime, end: datetime) -> None:
        """
        Raises:
            Overlapping: If the creator already has an event in [start, end)
        """
        conflict = self.find_conflict(creator_email, start, end)
        if conflict is not None:
            logger.info(
                f"Interval {format_utc(start)}-{format_utc(end)} for "
                f"{creator_email} overlaps event {conflict.event_id}"
            )
            raise Overlapping(conflict)


class CountryLimitChecker:
    """Caps the number of events per week for restricted countries."""

    def __init__(
        self,
        store: EventStore,
        restricted_countries: FrozenSet[str],
        weekly_limit: int = 3,
        week_start=SU
    ):
        """
        Args:
            store: Event store to count against
            restricted_countries: Countries subject to the weekly cap
            weekly_limit: Maximum events per week in those countries
            week_start: dateutil weekday the calendar week starts on
        """
        self.store = store
        self.restricted_countries = frozenset(restricted_countries)
        self.weekly_limit = weekly_limit
        self.week_start = week_start

    def start_of_week(self, occurrence: Occurrence) -> datetime:
        """Midnight of the first weekday of the occurrence's local week, in UTC."""
        tz = resolve_timezone(occurrence.time_zone)
        local = occurrence.start_utc.astimezone(tz)
        local_week_start = local + relativedelta(
            weekday=self.week_start(-1),
            hour=0,
            minute=0,
            second=0,
            microsecond=0
        )
        return local_week_start.astimezone(timezone.utc)

    def check(
        self,
        occurrence: Occurrence,
        creator_email: str,
        country: Optional[str]
    ) -> None:
        """
        Raises:
            WeeklyLimitReached: If the creator already has weekly_limit
                active events starting on or after this week's start
        """
        if country not in self.restricted_countries:
            return

        since = self.start_of_week(occurrence)
        existing = self.store.count_since(creator_email, since)
        logger.debug(
            f"{creator_email} has {existing} events since {format_utc(since)} "
            f"in restricted country {country}"
        )
        if existing >= self.weekly_limit:
            raise WeeklyLimitReached(country, self.weekly_limit)
