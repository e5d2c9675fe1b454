"""Runtime configuration read from environment variables."""
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from dateutil.relativedelta import MO, TU, WE, TH, FR, SA, SU


WEEKDAYS = {
    'monday': MO,
    'tuesday': TU,
    'wednesday': WE,
    'thursday': TH,
    'friday': FR,
    'saturday': SA,
    'sunday': SU
}

FIRST_OCCURRENCE_POLICIES = ('bounded', 'always')


def _parse_countries(raw: str) -> FrozenSet[str]:
    return frozenset(c.strip() for c in raw.split(',') if c.strip())


@dataclass(frozen=True)
class SchedulerConfig:
    """Settings for the scheduling core and its storage."""

    events_table_name: str = 'scheduler-events'
    participants_table_name: str = 'scheduler-participants'
    log_level: str = 'INFO'
    restricted_countries: FrozenSet[str] = field(
        default_factory=lambda: frozenset({'Japan', 'India'})
    )
    weekly_event_limit: int = 3
    week_start: str = 'sunday'
    # 'bounded': the recurrence end date bounds the first occurrence too.
    # 'always': the first occurrence is kept and only repeats are bounded.
    first_occurrence_policy: str = 'bounded'

    def __post_init__(self):
        if self.weekly_event_limit < 0:
            raise ValueError(
                f"WEEKLY_EVENT_LIMIT must be >= 0, got {self.weekly_event_limit}"
            )
        if self.week_start not in WEEKDAYS:
            raise ValueError(f"Unknown WEEK_START '{self.week_start}'")
        if self.first_occurrence_policy not in FIRST_OCCURRENCE_POLICIES:
            raise ValueError(
                f"RECURRENCE_FIRST_OCCURRENCE must be one of "
                f"{FIRST_OCCURRENCE_POLICIES}, got '{self.first_occurrence_policy}'"
            )

    @property
    def week_start_day(self):
        return WEEKDAYS[self.week_start]

    @property
    def include_first_occurrence(self) -> bool:
        return self.first_occurrence_policy == 'always'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'SchedulerConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            SchedulerConfig with environment values or defaults

        Raises:
            ValueError: If a value is malformed
        """
        env = os.environ if environ is None else environ
        return cls(
            events_table_name=env.get('EVENTS_TABLE_NAME', 'scheduler-events'),
            participants_table_name=env.get(
                'PARTICIPANTS_TABLE_NAME', 'scheduler-participants'
            ),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            restricted_countries=_parse_countries(
                env.get('RESTRICTED_COUNTRIES', 'Japan,India')
            ),
            weekly_event_limit=int(env.get('WEEKLY_EVENT_LIMIT', '3')),
            week_start=env.get('WEEK_START', 'sunday').strip().lower(),
            first_occurrence_policy=env.get(
                'RECURRENCE_FIRST_OCCURRENCE', 'bounded'
            ).strip().lower()
        )
