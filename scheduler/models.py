"""Data models for event scheduling."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from scheduler.errors import InvalidRequest
from scheduler.time_normalizer import format_utc


RECURRENCE_TYPES = ('daily', 'weekly', 'monthly')
RSVP_STATUSES = ('accepted', 'declined', 'pending')
DEFAULT_RSVP_STATUS = 'pending'


@dataclass(frozen=True)
class Occurrence:
    """One concrete interval of a single or recurring event."""
    start_utc: datetime
    end_utc: datetime
    start_local: str
    end_local: str
    time_zone: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start_time': format_utc(self.start_utc),
            'end_time': format_utc(self.end_utc),
            'start_time_local': self.start_local,
            'end_time_local': self.end_local,
            'time_zone': self.time_zone
        }


@dataclass
class Participant:
    """Invitee of a persisted event."""
    participant_id: str
    event_id: str
    name: str
    email: str
    rsvp_status: str = DEFAULT_RSVP_STATUS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'participant_id': self.participant_id,
            'event_id': self.event_id,
            'name': self.name,
            'email': self.email,
            'rsvp_status': self.rsvp_status
        }


@dataclass
class Event:
    """Persisted event row; one per accepted occurrence."""
    event_id: str
    creator_email: str
    country: str
    title: str
    start_time: datetime
    end_time: datetime
    start_time_local: str
    end_time_local: str
    time_zone: str
    description: Optional[str] = None
    location: Optional[str] = None
    recurrence_type: Optional[str] = None
    recurrence_end_date: Optional[datetime] = None
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    participants: List[Participant] = field(default_factory=list)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval test; touching endpoints do not overlap."""
        return self.start_time < end and self.end_time > start

    def to_dict(self, include_participants: bool = True) -> Dict[str, Any]:
        data = {
            'event_id': self.event_id,
            'creator_email': self.creator_email,
            'country': self.country,
            'title': self.title,
            'description': self.description,
            'start_time': format_utc(self.start_time),
            'end_time': format_utc(self.end_time),
            'start_time_local': self.start_time_local,
            'end_time_local': self.end_time_local,
            'time_zone': self.time_zone,
            'location': self.location,
            'recurrence_type': self.recurrence_type,
            'recurrence_end_date': (
                format_utc(self.recurrence_end_date)
                if self.recurrence_end_date else None
            ),
            'is_deleted': self.is_deleted,
            'created_at': format_utc(self.created_at) if self.created_at else None,
            'updated_at': format_utc(self.updated_at) if self.updated_at else None
        }
        if include_participants:
            data['participants'] = [p.to_dict() for p in self.participants]
        return data


@dataclass
class ParticipantInput:
    """Participant as supplied by the caller, before persistence."""
    name: str
    email: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParticipantInput':
        """
        Raises:
            InvalidRequest: If the entry is not an object with an email
        """
        if not isinstance(data, dict) or not data.get('email'):
            raise InvalidRequest(
                'Each participant requires an email',
                fields=['email'],
                participant=data
            )
        return cls(name=data.get('name', ''), email=data['email'])


@dataclass
class CreateEventRequest:
    """Input of the creation pipeline."""
    creator_email: str
    title: str
    start_time: str
    end_time: str
    time_zone: str
    country: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    participants: List[ParticipantInput] = field(default_factory=list)
    recurrence_type: Optional[str] = None
    recurrence_end_date: Optional[str] = None

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_type and self.recurrence_end_date)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreateEventRequest':
        return cls(
            creator_email=data['creator_email'],
            title=data['title'],
            start_time=data['start_time'],
            end_time=data['end_time'],
            time_zone=data['time_zone'],
            country=data.get('country'),
            description=data.get('description'),
            location=data.get('location'),
            participants=[
                ParticipantInput.from_dict(p)
                for p in data.get('participants') or []
            ],
            recurrence_type=data.get('recurrence_type'),
            recurrence_end_date=data.get('recurrence_end_date')
        )


@dataclass
class EditEventRequest:
    """Partial update of an event; None means unchanged."""
    creator_email: str
    country: str
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    time_zone: Optional[str] = None
    location: Optional[str] = None
    participants_to_add: List[ParticipantInput] = field(default_factory=list)
    participants_to_remove: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EditEventRequest':
        return cls(
            creator_email=data['creator_email'],
            country=data['country'],
            title=data.get('title'),
            description=data.get('description'),
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
            time_zone=data.get('time_zone'),
            location=data.get('location'),
            participants_to_add=[
                ParticipantInput.from_dict(p)
                for p in data.get('participants_to_add') or []
            ],
            participants_to_remove=[
                str(pid) for pid in data.get('participants_to_remove') or []
            ]
        )


class OutcomeStatus(Enum):
    """Terminal state of one occurrence in the creation pipeline."""
    CREATED = 'created'
    TIME_INVALID = 'time_invalid'
    OVERLAPPING = 'overlapping'
    LIMIT_REACHED = 'limit_reached'


@dataclass
class OccurrenceOutcome:
    """Result of processing one occurrence."""
    status: OutcomeStatus
    occurrence: Occurrence
    event: Optional[Event] = None
    participants: List[Participant] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.status is OutcomeStatus.CREATED

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {
                'success': True,
                'status': self.status.value,
                'message': 'Event created successfully!',
                'event': self.event.to_dict(include_participants=False),
                'participants': [p.to_dict() for p in self.participants]
            }
        return {
            'success': False,
            'status': self.status.value,
            'error': self.error.to_dict(),
            'event_data': self.occurrence.to_dict()
        }
