"""Repository interface for event and participant persistence."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from scheduler.models import Event, Participant, ParticipantInput


# Event attributes a caller may pass to create_event/update_event
EVENT_FIELDS = (
    'creator_email',
    'country',
    'title',
    'description',
    'start_time',
    'end_time',
    'start_time_local',
    'end_time_local',
    'time_zone',
    'location',
    'recurrence_type',
    'recurrence_end_date',
    'is_deleted'
)

PARTICIPANT_FIELDS = ('name', 'email', 'rsvp_status')


class EventStore(ABC):
    """
    Abstract store for events and their participants.

    The scheduling core depends only on this interface, so tests can run
    against InMemoryEventStore while deployments use DynamoDBEventStore.
    Events returned by lookups carry their participants only where noted.
    """

    @abstractmethod
    def find_overlapping(
        self,
        creator_email: str,
        start: datetime,
        end: datetime
    ) -> Optional[Event]:
        """
        Find an active event of the creator intersecting [start, end).

        Returns:
            First event with event.start < end and event.end > start,
            or None
        """

    @abstractmethod
    def count_since(self, creator_email: str, since: datetime) -> int:
        """Count the creator's active events with start_time >= since."""

    @abstractmethod
    def find_active_by_id(self, event_id: str) -> Optional[Event]:
        """Fetch a non-deleted event with its participants, or None."""

    @abstractmethod
    def create_event(self, fields: Dict[str, Any]) -> Event:
        """
        Persist a new event and assign its identity.

        Args:
            fields: Values keyed by EVENT_FIELDS names

        Returns:
            Created Event
        """

    @abstractmethod
    def create_participants(
        self,
        event_id: str,
        participants: Iterable[ParticipantInput]
    ) -> List[Participant]:
        """Persist participants for an event with rsvp_status 'pending'."""

    @abstractmethod
    def update_event(self, event_id: str, fields: Dict[str, Any]) -> Event:
        """
        Overwrite the given fields of an event.

        Raises:
            KeyError: If the event does not exist
        """

    @abstractmethod
    def find_participants(self, event_id: str) -> List[Participant]:
        """List all participants of an event."""

    @abstractmethod
    def find_participant(self, event_id: str, email: str) -> Optional[Participant]:
        """Find the participant of an event by email."""

    @abstractmethod
    def update_participant(
        self,
        participant_id: str,
        fields: Dict[str, Any]
    ) -> Participant:
        """
        Overwrite the given fields of a participant.

        Raises:
            KeyError: If the participant does not exist
        """

    @abstractmethod
    def delete_participants(
        self,
        event_id: str,
        participant_ids: Iterable[str]
    ) -> int:
        """Remove participants of an event by id; returns the count removed."""

    @abstractmethod
    def list_active(self) -> List[Event]:
        """All non-deleted events with their participants."""

    @abstractmethod
    def find_active_for_user(self, email: str) -> List[Event]:
        """Non-deleted events created by or inviting the email, with participants."""
