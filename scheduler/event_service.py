"""Event creation pipeline and the other caller-facing operations."""
import logging
import threading
from collections import Counter
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple, Union

from scheduler.checks import CountryLimitChecker, OverlapChecker
from scheduler.config import SchedulerConfig
from scheduler.errors import (
    DuplicateParticipantEmail,
    EndNotAfterStart,
    IncompleteRecurrenceSpec,
    InvalidRsvpStatus,
    NotFound,
    Overlapping,
    Unauthorized,
    WeeklyLimitReached,
)
from scheduler.models import (
    RSVP_STATUSES,
    CreateEventRequest,
    EditEventRequest,
    Event,
    Occurrence,
    OccurrenceOutcome,
    OutcomeStatus,
    Participant,
    ParticipantInput,
)
from scheduler.recurrence import RecurrenceExpander, build_occurrence
from scheduler.time_normalizer import (
    ensure_end_after_start,
    ensure_utc_encoded,
    format_utc,
    normalize,
    resolve_timezone,
)
from storage.base import EventStore

logger = logging.getLogger(__name__)

CreateResult = Union[OccurrenceOutcome, List[OccurrenceOutcome]]


def _duplicate_emails(participants: List[ParticipantInput]) -> List[str]:
    counts = Counter(p.email for p in participants)
    return [email for email, count in counts.items() if count > 1]


class EventService:
    """
    Scheduling operations over an injected EventStore.

    Occurrences of one creation request are processed strictly in order,
    each one persisted before the next is checked, so overlap and weekly
    limit checks see the events accepted earlier in the same batch. The
    whole check-and-create sequence runs under a per-creator lock, which
    serializes requests of one creator within this process. Requests
    handled by other processes against the same store are not serialized.
    """

    def __init__(self, store: EventStore, config: Optional[SchedulerConfig] = None):
        """
        Args:
            store: Event and participant persistence
            config: Limits and policies; defaults when omitted
        """
        self.store = store
        self.config = config or SchedulerConfig()
        self.overlap_checker = OverlapChecker(store)
        self.limit_checker = CountryLimitChecker(
            store,
            restricted_countries=self.config.restricted_countries,
            weekly_limit=self.config.weekly_event_limit,
            week_start=self.config.week_start_day
        )
        self.expander = RecurrenceExpander(
            include_first_occurrence=self.config.include_first_occurrence
        )
        self._creator_locks: Dict[str, threading.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _creator_lock(self, creator_email: str) -> Iterator[None]:
        """Hold the creator's lock; its entry is dropped once unused."""
        with self._locks_guard:
            lock = self._creator_locks.setdefault(creator_email, threading.Lock())
            self._lock_users[creator_email] = self._lock_users.get(creator_email, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                self._lock_users[creator_email] -= 1
                if not self._lock_users[creator_email]:
                    del self._lock_users[creator_email]
                    del self._creator_locks[creator_email]

    # =========================================================================
    # Creation pipeline
    # =========================================================================

    def create_event(self, request: CreateEventRequest) -> CreateResult:
        """
        Create a single event or one event per occurrence of a recurrence.

        Validation errors abort the whole request before any occurrence is
        processed. Once processing starts, a failing occurrence is reported
        in its outcome and the remaining occurrences are still processed.

        Args:
            request: Creation request

        Returns:
            List of outcomes for a recurring request, otherwise the single
            outcome

        Raises:
            InvalidTimezone, NotUTCEncoded, EndNotAfterStart,
            IncompleteRecurrenceSpec, DuplicateParticipantEmail
        """
        base = self._validate_create_request(request)
        occurrences = self._plan_occurrences(request, base)

        logger.info(
            f"Creating {len(occurrences)} occurrence(s) of '{request.title}' "
            f"for {request.creator_email}",
            extra={
                'creator_email': request.creator_email,
                'recurrence_type': request.recurrence_type,
                'occurrences': len(occurrences)
            }
        )

        outcomes = []
        with self._creator_lock(request.creator_email):
            # Must stay a plain in-order loop: each occurrence is checked
            # against the store after the previous one was written.
            for occurrence in occurrences:
                outcomes.append(self._process_occurrence(request, occurrence))

        created = sum(1 for o in outcomes if o.success)
        logger.info(
            f"Created {created} of {len(outcomes)} occurrence(s) "
            f"for {request.creator_email}"
        )

        if request.is_recurring:
            return outcomes
        return outcomes[0]

    def _validate_create_request(self, request: CreateEventRequest) -> Occurrence:
        """Validate the base interval and return it as an Occurrence."""
        tz = resolve_timezone(request.time_zone)
        start = ensure_utc_encoded(request.start_time, 'start_time')
        end = ensure_utc_encoded(request.end_time, 'end_time')
        if request.recurrence_end_date is not None:
            ensure_utc_encoded(request.recurrence_end_date, 'recurrence_end_date')

        duplicates = _duplicate_emails(request.participants)
        if duplicates:
            raise DuplicateParticipantEmail(duplicates)

        start_utc, _ = normalize(start, tz, 'start_time')
        end_utc, _ = normalize(end, tz, 'end_time')
        ensure_end_after_start(start_utc, end_utc)

        return build_occurrence(start_utc, end_utc, request.time_zone)

    def _plan_occurrences(
        self,
        request: CreateEventRequest,
        base: Occurrence
    ) -> List[Occurrence]:
        if request.is_recurring:
            boundary, _ = normalize(
                request.recurrence_end_date,
                request.time_zone,
                'recurrence_end_date'
            )
            return self.expander.expand(
                base.start_utc,
                base.end_utc,
                request.recurrence_type,
                boundary,
                request.time_zone
            )

        if request.recurrence_type or request.recurrence_end_date:
            raise IncompleteRecurrenceSpec(
                recurrence_type=request.recurrence_type,
                recurrence_end_date=request.recurrence_end_date
            )
        return [base]

    def _process_occurrence(
        self,
        request: CreateEventRequest,
        occurrence: Occurrence
    ) -> OccurrenceOutcome:
        """Check one occurrence against the current store and persist it."""
        try:
            ensure_end_after_start(occurrence.start_utc, occurrence.end_utc)
            self.overlap_checker.check(
                request.creator_email,
                occurrence.start_utc,
                occurrence.end_utc
            )
            self.limit_checker.check(
                occurrence,
                request.creator_email,
                request.country
            )
        except EndNotAfterStart as e:
            return self._failed(OutcomeStatus.TIME_INVALID, occurrence, e)
        except Overlapping as e:
            return self._failed(OutcomeStatus.OVERLAPPING, occurrence, e)
        except WeeklyLimitReached as e:
            return self._failed(OutcomeStatus.LIMIT_REACHED, occurrence, e)

        event = self.store.create_event({
            'creator_email': request.creator_email,
            'country': request.country,
            'title': request.title,
            'description': request.description,
            'start_time': occurrence.start_utc,
            'end_time': occurrence.end_utc,
            'start_time_local': occurrence.start_local,
            'end_time_local': occurrence.end_local,
            'time_zone': occurrence.time_zone,
            'location': request.location,
            'recurrence_type': request.recurrence_type,
            'recurrence_end_date': (
                ensure_utc_encoded(request.recurrence_end_date, 'recurrence_end_date')
                if request.recurrence_end_date else None
            )
        })
        participants = self.store.create_participants(
            event.event_id, request.participants
        )
        event.participants = participants

        logger.info(
            f"Created event {event.event_id} at {format_utc(occurrence.start_utc)}"
        )
        return OccurrenceOutcome(
            status=OutcomeStatus.CREATED,
            occurrence=occurrence,
            event=event,
            participants=participants
        )

    def _failed(
        self,
        status: OutcomeStatus,
        occurrence: Occurrence,
        error: Exception
    ) -> OccurrenceOutcome:
        logger.warning(
            f"Occurrence at {format_utc(occurrence.start_utc)} rejected: "
            f"{error.kind}: {error.message}"
        )
        return OccurrenceOutcome(status=status, occurrence=occurrence, error=error)

    # =========================================================================
    # Participants
    # =========================================================================

    def rsvp(
        self,
        event_id: str,
        email: str,
        rsvp_status: str
    ) -> Tuple[Event, Participant]:
        """
        Record a participant's answer to an invitation.

        Raises:
            InvalidRsvpStatus: If the status is not accepted/declined/pending
            NotFound: If the event or the participant does not exist
        """
        if rsvp_status not in RSVP_STATUSES:
            raise InvalidRsvpStatus(rsvp_status)

        event = self._get_active(event_id)
        participant = self.store.find_participant(event.event_id, email)
        if participant is None:
            raise NotFound(
                f"No participant found with email {email} for event ID {event_id}.",
                event_id=event_id,
                email=email
            )

        participant = self.store.update_participant(
            participant.participant_id, {'rsvp_status': rsvp_status}
        )
        logger.info(f"{email} answered '{rsvp_status}' for event {event_id}")
        return event, participant

    # =========================================================================
    # Edit and delete
    # =========================================================================

    def edit_event(self, event_id: str, request: EditEventRequest) -> Event:
        """
        Update an event on behalf of its creator.

        Changed times are re-normalized and their order re-checked, but
        overlap and weekly limit checks are not re-run on edit.

        Raises:
            NotFound: If the event is missing, deleted, or a participant to
                remove does not belong to it
            Unauthorized: If creator_email or country do not match the event
            InvalidTimezone, NotUTCEncoded, EndNotAfterStart,
            DuplicateParticipantEmail
        """
        with self._creator_lock(request.creator_email):
            event = self._get_active(event_id)
            if (event.creator_email != request.creator_email
                    or event.country != request.country):
                raise Unauthorized(
                    'You are not authorized to edit this event.',
                    creator_email=request.creator_email,
                    country=request.country
                )

            fields = {
                name: getattr(request, name)
                for name in ('title', 'description', 'location')
                if getattr(request, name) is not None
            }
            fields.update(self._rescheduled_fields(event, request))

            self._validate_participant_changes(event, request)

            if fields:
                self.store.update_event(event.event_id, fields)
            if request.participants_to_add:
                self.store.create_participants(
                    event.event_id, request.participants_to_add
                )
            if request.participants_to_remove:
                self.store.delete_participants(
                    event.event_id, request.participants_to_remove
                )

            logger.info(
                f"Updated event {event.event_id}",
                extra={
                    'fields': sorted(fields),
                    'participants_added': len(request.participants_to_add),
                    'participants_removed': len(request.participants_to_remove)
                }
            )
            return self._get_active(event.event_id)

    def _rescheduled_fields(self, event: Event, request: EditEventRequest) -> dict:
        if not (request.start_time or request.end_time or request.time_zone):
            return {}

        time_zone = request.time_zone or event.time_zone
        tz = resolve_timezone(time_zone)
        start = (
            ensure_utc_encoded(request.start_time, 'start_time')
            if request.start_time else event.start_time
        )
        end = (
            ensure_utc_encoded(request.end_time, 'end_time')
            if request.end_time else event.end_time
        )
        start_utc, start_local = normalize(start, tz, 'start_time')
        end_utc, end_local = normalize(end, tz, 'end_time')
        ensure_end_after_start(start_utc, end_utc)

        if start_utc != event.start_time or end_utc != event.end_time:
            logger.warning(
                f"Event {event.event_id} rescheduled to "
                f"{format_utc(start_utc)}-{format_utc(end_utc)} without "
                f"overlap or weekly limit checks"
            )
        return {
            'start_time': start_utc,
            'end_time': end_utc,
            'start_time_local': start_local,
            'end_time_local': end_local,
            'time_zone': time_zone
        }

    def _validate_participant_changes(
        self,
        event: Event,
        request: EditEventRequest
    ) -> None:
        duplicates = _duplicate_emails(request.participants_to_add)
        if duplicates:
            raise DuplicateParticipantEmail(duplicates)

        existing_emails = {p.email for p in event.participants}
        already_invited = [
            p.email for p in request.participants_to_add
            if p.email in existing_emails
        ]
        if already_invited:
            raise DuplicateParticipantEmail(
                already_invited,
                message=(
                    f"The following emails are already participant for this "
                    f"event: {', '.join(sorted(already_invited))}"
                )
            )

        existing_ids = {p.participant_id for p in event.participants}
        unknown_ids = [
            pid for pid in request.participants_to_remove if pid not in existing_ids
        ]
        if unknown_ids:
            raise NotFound(
                f"The following participant ids are not participant for this "
                f"event: {', '.join(unknown_ids)}",
                event_id=event.event_id,
                participant_ids=unknown_ids
            )

    def delete_event(self, event_id: str, creator_email: str) -> Event:
        """
        Soft-delete an event; participants are left untouched.

        Raises:
            NotFound: If the event is missing or already deleted
            Unauthorized: If creator_email is not the event's creator
        """
        with self._creator_lock(creator_email):
            event = self._get_active(event_id)
            if event.creator_email != creator_email:
                raise Unauthorized(
                    'You are not authorized to delete this event.',
                    creator_email=creator_email
                )
            event = self.store.update_event(event.event_id, {'is_deleted': True})

        logger.info(f"Soft-deleted event {event.event_id}")
        return event

    # =========================================================================
    # Queries
    # =========================================================================

    def get_event(self, event_id: str) -> Event:
        """
        Raises:
            NotFound: If the event is missing or deleted
        """
        return self._get_active(event_id)

    def list_events(self) -> List[Event]:
        return self.store.list_active()

    def events_for_user(self, email: str) -> List[Event]:
        """
        Active events the user created or was invited to.

        Raises:
            NotFound: If there are none
        """
        events = self.store.find_active_for_user(email)
        if not events:
            raise NotFound('No events found for the specified user.', email=email)
        return events

    def _get_active(self, event_id: str) -> Event:
        event = self.store.find_active_by_id(event_id)
        if event is None:
            raise NotFound(
                'Event not found or has been deleted',
                event_id=event_id
            )
        return event
