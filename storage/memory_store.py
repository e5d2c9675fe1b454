"""In-process event store for tests and local runs."""
import copy
import itertools
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from scheduler.models import DEFAULT_RSVP_STATUS, Event, Participant, ParticipantInput
from scheduler.time_normalizer import utc_now
from storage.base import EVENT_FIELDS, PARTICIPANT_FIELDS, EventStore

logger = logging.getLogger(__name__)


class InMemoryEventStore(EventStore):
    """EventStore backed by dictionaries; returns copies, never live rows."""

    def __init__(self):
        self._events: Dict[str, Event] = {}
        self._participants: Dict[str, Participant] = {}
        self._event_ids = itertools.count(1)
        self._participant_ids = itertools.count(1)
        self._lock = threading.Lock()

    def _active_events(self, creator_email: str) -> List[Event]:
        """Must hold _lock."""
        return sorted(
            (
                e for e in self._events.values()
                if e.creator_email == creator_email and not e.is_deleted
            ),
            key=lambda e: e.start_time
        )

    def _with_participants(self, event: Event) -> Event:
        """Must hold _lock."""
        result = copy.deepcopy(event)
        result.participants = self._participants_of(event.event_id)
        return result

    def _participants_of(self, event_id: str) -> List[Participant]:
        """Must hold _lock."""
        return [
            copy.deepcopy(p) for p in self._participants.values()
            if p.event_id == event_id
        ]

    def find_overlapping(
        self,
        creator_email: str,
        start: datetime,
        end: datetime
    ) -> Optional[Event]:
        with self._lock:
            for event in self._active_events(creator_email):
                if event.overlaps(start, end):
                    return copy.deepcopy(event)
        return None

    def count_since(self, creator_email: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1 for e in self._active_events(creator_email)
                if e.start_time >= since
            )

    def find_active_by_id(self, event_id: str) -> Optional[Event]:
        with self._lock:
            event = self._events.get(str(event_id))
            if event is None or event.is_deleted:
                return None
            return self._with_participants(event)

    def create_event(self, fields: Dict[str, Any]) -> Event:
        unknown = set(fields) - set(EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown event fields: {sorted(unknown)}")

        with self._lock:
            now = utc_now()
            event = Event(
                event_id=str(next(self._event_ids)),
                created_at=now,
                updated_at=now,
                **fields
            )
            self._events[event.event_id] = event
            logger.debug(f"Created event {event.event_id}")
            return copy.deepcopy(event)

    def create_participants(
        self,
        event_id: str,
        participants: Iterable[ParticipantInput]
    ) -> List[Participant]:
        created = []
        with self._lock:
            for participant in participants:
                record = Participant(
                    participant_id=str(next(self._participant_ids)),
                    event_id=str(event_id),
                    name=participant.name,
                    email=participant.email,
                    rsvp_status=DEFAULT_RSVP_STATUS
                )
                self._participants[record.participant_id] = record
                created.append(copy.deepcopy(record))
        return created

    def update_event(self, event_id: str, fields: Dict[str, Any]) -> Event:
        unknown = set(fields) - set(EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown event fields: {sorted(unknown)}")

        with self._lock:
            event = self._events[str(event_id)]
            for name, value in fields.items():
                setattr(event, name, value)
            event.updated_at = utc_now()
            return self._with_participants(event)

    def find_participants(self, event_id: str) -> List[Participant]:
        with self._lock:
            return self._participants_of(str(event_id))

    def find_participant(self, event_id: str, email: str) -> Optional[Participant]:
        with self._lock:
            for participant in self._participants.values():
                if participant.event_id == str(event_id) and participant.email == email:
                    return copy.deepcopy(participant)
        return None

    def update_participant(
        self,
        participant_id: str,
        fields: Dict[str, Any]
    ) -> Participant:
        unknown = set(fields) - set(PARTICIPANT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown participant fields: {sorted(unknown)}")

        with self._lock:
            participant = self._participants[str(participant_id)]
            for name, value in fields.items():
                setattr(participant, name, value)
            return copy.deepcopy(participant)

    def delete_participants(
        self,
        event_id: str,
        participant_ids: Iterable[str]
    ) -> int:
        removed = 0
        with self._lock:
            for participant_id in participant_ids:
                participant = self._participants.get(str(participant_id))
                if participant is not None and participant.event_id == str(event_id):
                    del self._participants[participant.participant_id]
                    removed += 1
        return removed

    def list_active(self) -> List[Event]:
        with self._lock:
            return [
                self._with_participants(e)
                for e in sorted(self._events.values(), key=lambda e: e.start_time)
                if not e.is_deleted
            ]

    def find_active_for_user(self, email: str) -> List[Event]:
        with self._lock:
            invited = {
                p.event_id for p in self._participants.values() if p.email == email
            }
            return [
                self._with_participants(e)
                for e in sorted(self._events.values(), key=lambda e: e.start_time)
                if not e.is_deleted
                and (e.creator_email == email or e.event_id in invited)
            ]
