"""Error kinds raised by the scheduling core.

Every error carries a machine-readable ``kind``, a human message and the
structured data needed to render actionable feedback to the caller.
"""
from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    """Base class for all recoverable scheduling errors."""

    kind = 'SchedulingError'

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        data = {'kind': self.kind, 'message': self.message}
        data.update(self.details)
        return data


class InvalidTimezone(SchedulingError):
    kind = 'InvalidTimezone'

    def __init__(self, time_zone: Any):
        super().__init__(
            'Time zone should be a valid standard timezone string',
            time_zone=time_zone
        )


class NotUTCEncoded(SchedulingError):
    kind = 'NotUTCEncoded'

    def __init__(self, field_name: str, value: Any):
        super().__init__(
            f"{field_name} must be in UTC format e.g. 2024-11-06T06:15:00.000Z",
            field=field_name,
            value=value
        )


class EndNotAfterStart(SchedulingError):
    kind = 'EndNotAfterStart'

    def __init__(self, start_time: str, end_time: str):
        super().__init__(
            'End time must be after start time.',
            start_time=start_time,
            end_time=end_time
        )


class IncompleteRecurrenceSpec(SchedulingError):
    kind = 'IncompleteRecurrenceSpec'

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(
            message or (
                'For a recurring event both recurrence_type and '
                'recurrence_end_date are required'
            ),
            **details
        )


class Overlapping(SchedulingError):
    kind = 'Overlapping'

    def __init__(self, conflicting_event):
        super().__init__(
            "This event overlaps with an existing event in the user's schedule."
        )
        self.conflicting_event = conflicting_event

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['conflicts'] = self.conflicting_event.to_dict(
            include_participants=False
        )
        return data


class WeeklyLimitReached(SchedulingError):
    kind = 'WeeklyLimitReached'

    def __init__(self, country: str, limit: int):
        super().__init__(
            f"Event creation limit reached for {country}. "
            f"Only {limit} events per week allowed.",
            country=country,
            limit=limit
        )


class NotFound(SchedulingError):
    kind = 'NotFound'


class Unauthorized(SchedulingError):
    kind = 'Unauthorized'


class DuplicateParticipantEmail(SchedulingError):
    kind = 'DuplicateParticipantEmail'

    def __init__(self, emails: List[str], message: Optional[str] = None):
        super().__init__(
            message or 'All participant emails must be unique within the event.',
            emails=sorted(emails)
        )


class InvalidRsvpStatus(SchedulingError):
    kind = 'InvalidRsvpStatus'

    def __init__(self, rsvp_status: Any):
        super().__init__(
            "RSVP status must be one of 'declined', 'accepted', or 'pending'",
            rsvp_status=rsvp_status
        )


class InvalidRequest(SchedulingError):
    kind = 'InvalidRequest'
