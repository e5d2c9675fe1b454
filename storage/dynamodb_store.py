"""DynamoDB-backed event store."""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from scheduler.models import DEFAULT_RSVP_STATUS, Event, Participant, ParticipantInput
from scheduler.time_normalizer import format_utc, parse_utc, utc_now
from storage.base import EVENT_FIELDS, PARTICIPANT_FIELDS, EventStore

logger = logging.getLogger(__name__)

CREATOR_INDEX = 'creator-start-index'
EVENT_INDEX = 'event-index'
EMAIL_INDEX = 'email-index'

DATETIME_FIELDS = ('start_time', 'end_time', 'recurrence_end_date')


class DynamoDBEventStore(EventStore):
    """
    EventStore on two DynamoDB tables.

    Events are keyed by event_id with a (creator_email, start_time) index.
    Instants are stored as YYYY-MM-DDTHH:MM:SS.mmmZ strings, which sort
    in time order, so range conditions on start_time work lexicographically.
    Participants are keyed by participant_id with event_id and email indexes.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(
        self,
        events_table_name: str,
        participants_table_name: str,
        dynamodb=None
    ):
        """
        Initialize DynamoDB table references.

        Args:
            events_table_name: Name of the events table
            participants_table_name: Name of the participants table
            dynamodb: Optional boto3 DynamoDB resource to reuse
        """
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.events_table = self.dynamodb.Table(events_table_name)
        self.participants_table = self.dynamodb.Table(participants_table_name)
        logger.info(
            f"Initialized DynamoDBEventStore for tables: "
            f"{events_table_name}, {participants_table_name}"
        )

    def find_overlapping(
        self,
        creator_email: str,
        start: datetime,
        end: datetime
    ) -> Optional[Event]:
        # start_time < end narrows on the index; end_time > start is filtered
        items = self._query_all(
            self.events_table,
            'find_overlapping',
            IndexName=CREATOR_INDEX,
            KeyConditionExpression=(
                Key('creator_email').eq(creator_email)
                & Key('start_time').lt(format_utc(end))
            ),
            FilterExpression=(
                Attr('end_time').gt(format_utc(start))
                & Attr('is_deleted').eq(False)
            )
        )
        if not items:
            return None
        return self._item_to_event(items[0])

    def count_since(self, creator_email: str, since: datetime) -> int:
        query_kwargs = {
            'IndexName': CREATOR_INDEX,
            'KeyConditionExpression': (
                Key('creator_email').eq(creator_email)
                & Key('start_time').gte(format_utc(since))
            ),
            'FilterExpression': Attr('is_deleted').eq(False),
            'Select': 'COUNT'
        }

        try:
            response = self.events_table.query(**query_kwargs)
            count = response.get('Count', 0)

            while 'LastEvaluatedKey' in response:
                response = self.events_table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **query_kwargs
                )
                count += response.get('Count', 0)

            return count

        except ClientError as e:
            logger.error(f"Error counting events for {creator_email}: {e}")
            raise

    def find_active_by_id(self, event_id: str) -> Optional[Event]:
        try:
            response = self.events_table.get_item(Key={'event_id': str(event_id)})
        except ClientError as e:
            logger.error(f"Error fetching event {event_id}: {e}")
            raise

        item = response.get('Item')
        if not item or item.get('is_deleted'):
            return None

        event = self._item_to_event(item)
        event.participants = self.find_participants(event.event_id)
        return event

    def create_event(self, fields: Dict[str, Any]) -> Event:
        unknown = set(fields) - set(EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown event fields: {sorted(unknown)}")

        now = format_utc(utc_now())
        item = {
            'event_id': uuid.uuid4().hex,
            'is_deleted': False,
            'created_at': now,
            'updated_at': now
        }
        item.update(self._fields_to_attributes(fields))

        try:
            self.events_table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(event_id)'
            )
        except ClientError as e:
            logger.error(f"Error creating event for {item.get('creator_email')}: {e}")
            raise

        logger.debug(f"Created event {item['event_id']}")
        return self._item_to_event(item)

    def create_participants(
        self,
        event_id: str,
        participants: Iterable[ParticipantInput]
    ) -> List[Participant]:
        records = [
            Participant(
                participant_id=uuid.uuid4().hex,
                event_id=str(event_id),
                name=p.name,
                email=p.email,
                rsvp_status=DEFAULT_RSVP_STATUS
            )
            for p in participants
        ]
        if not records:
            return []

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(records), self.BATCH_SIZE):
            batch = records[i:i + self.BATCH_SIZE]

            try:
                with self.participants_table.batch_writer() as writer:
                    for record in batch:
                        writer.put_item(Item=self._participant_to_item(record))

            except ClientError as e:
                logger.error(
                    f"Error writing participant batch {i // self.BATCH_SIZE + 1} "
                    f"for event {event_id}: {e}"
                )
                raise

        logger.debug(f"Created {len(records)} participants for event {event_id}")
        return records

    def update_event(self, event_id: str, fields: Dict[str, Any]) -> Event:
        unknown = set(fields) - set(EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown event fields: {sorted(unknown)}")

        attributes = self._fields_to_attributes(fields, keep_none=True)
        attributes['updated_at'] = format_utc(utc_now())
        item = self._update_item(
            self.events_table,
            {'event_id': str(event_id)},
            attributes,
            'event_id'
        )
        event = self._item_to_event(item)
        event.participants = self.find_participants(event.event_id)
        return event

    def find_participants(self, event_id: str) -> List[Participant]:
        items = self._query_all(
            self.participants_table,
            'find_participants',
            IndexName=EVENT_INDEX,
            KeyConditionExpression=Key('event_id').eq(str(event_id))
        )
        return [self._item_to_participant(item) for item in items]

    def find_participant(self, event_id: str, email: str) -> Optional[Participant]:
        items = self._query_all(
            self.participants_table,
            'find_participant',
            IndexName=EVENT_INDEX,
            KeyConditionExpression=Key('event_id').eq(str(event_id)),
            FilterExpression=Attr('email').eq(email)
        )
        if not items:
            return None
        return self._item_to_participant(items[0])

    def update_participant(
        self,
        participant_id: str,
        fields: Dict[str, Any]
    ) -> Participant:
        unknown = set(fields) - set(PARTICIPANT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown participant fields: {sorted(unknown)}")

        item = self._update_item(
            self.participants_table,
            {'participant_id': str(participant_id)},
            dict(fields),
            'participant_id'
        )
        return self._item_to_participant(item)

    def delete_participants(
        self,
        event_id: str,
        participant_ids: Iterable[str]
    ) -> int:
        owned = {p.participant_id for p in self.find_participants(event_id)}
        to_delete = [str(pid) for pid in participant_ids if str(pid) in owned]
        if not to_delete:
            return 0

        for i in range(0, len(to_delete), self.BATCH_SIZE):
            batch = to_delete[i:i + self.BATCH_SIZE]

            try:
                with self.participants_table.batch_writer() as writer:
                    for participant_id in batch:
                        writer.delete_item(Key={'participant_id': participant_id})

            except ClientError as e:
                logger.error(
                    f"Error deleting participant batch {i // self.BATCH_SIZE + 1} "
                    f"for event {event_id}: {e}"
                )
                raise

        logger.info(f"Removed {len(to_delete)} participants from event {event_id}")
        return len(to_delete)

    def list_active(self) -> List[Event]:
        logger.info("Scanning DynamoDB table for active events")
        items = self._scan_all(
            self.events_table,
            FilterExpression=Attr('is_deleted').eq(False)
        )
        events = [self._item_to_event(item) for item in items]
        for event in events:
            event.participants = self.find_participants(event.event_id)
        return sorted(events, key=lambda e: e.start_time)

    def find_active_for_user(self, email: str) -> List[Event]:
        created = self._query_all(
            self.events_table,
            'find_active_for_user',
            IndexName=CREATOR_INDEX,
            KeyConditionExpression=Key('creator_email').eq(email),
            FilterExpression=Attr('is_deleted').eq(False)
        )
        events = {item['event_id']: self._item_to_event(item) for item in created}

        invitations = self._query_all(
            self.participants_table,
            'find_active_for_user',
            IndexName=EMAIL_INDEX,
            KeyConditionExpression=Key('email').eq(email)
        )
        for invitation in invitations:
            if invitation['event_id'] in events:
                continue
            event = self.find_active_by_id(invitation['event_id'])
            if event is not None:
                events[event.event_id] = event

        for event in events.values():
            if not event.participants:
                event.participants = self.find_participants(event.event_id)
        return sorted(events.values(), key=lambda e: e.start_time)

    def _query_all(self, table, operation: str, **query_kwargs) -> List[dict]:
        """
        Run a query and follow LastEvaluatedKey until exhausted.

        Args:
            table: boto3 Table to query
            operation: Caller name for error logs
            **query_kwargs: Arguments passed to Table.query

        Returns:
            All matching items in index order
        """
        try:
            response = table.query(**query_kwargs)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **query_kwargs
                )
                items.extend(response.get('Items', []))

            return items

        except ClientError as e:
            logger.error(f"Error querying {table.name} in {operation}: {e}")
            raise

    def _scan_all(self, table, **scan_kwargs) -> List[dict]:
        try:
            response = table.scan(**scan_kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_kwargs
                )
                items.extend(response.get('Items', []))

            logger.info(f"Retrieved {len(items)} items from {table.name}")
            return items

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table {table.name}: {e}")
            raise

    def _update_item(
        self,
        table,
        key: Dict[str, str],
        attributes: Dict[str, Any],
        key_name: str
    ) -> dict:
        """
        SET the given attributes on an existing item.

        Raises:
            KeyError: If no item has the key
        """
        names = {}
        values = {}
        assignments = []
        for i, (name, value) in enumerate(attributes.items()):
            names[f'#f{i}'] = name
            values[f':v{i}'] = value
            assignments.append(f'#f{i} = :v{i}')

        try:
            response = table.update_item(
                Key=key,
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression=f'attribute_exists({key_name})',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise KeyError(key[key_name]) from e
            logger.error(f"Error updating {table.name} item {key}: {e}")
            raise

        return response['Attributes']

    def _fields_to_attributes(
        self,
        fields: Dict[str, Any],
        keep_none: bool = False
    ) -> Dict[str, Any]:
        """Convert Event field values to DynamoDB attribute values."""
        attributes = {}
        for name, value in fields.items():
            if value is None:
                if keep_none:
                    attributes[name] = None
                continue
            if name in DATETIME_FIELDS:
                value = format_utc(value)
            attributes[name] = value
        return attributes

    def _item_to_event(self, item: dict) -> Event:
        """
        Convert DynamoDB item to Event object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Event object
        """
        recurrence_end_date = item.get('recurrence_end_date')
        created_at = item.get('created_at')
        updated_at = item.get('updated_at')
        return Event(
            event_id=item['event_id'],
            creator_email=item['creator_email'],
            country=item.get('country'),
            title=item['title'],
            description=item.get('description'),
            start_time=parse_utc(item['start_time']),
            end_time=parse_utc(item['end_time']),
            start_time_local=item['start_time_local'],
            end_time_local=item['end_time_local'],
            time_zone=item['time_zone'],
            location=item.get('location'),
            recurrence_type=item.get('recurrence_type'),
            recurrence_end_date=(
                parse_utc(recurrence_end_date) if recurrence_end_date else None
            ),
            is_deleted=bool(item.get('is_deleted', False)),
            created_at=parse_utc(created_at) if created_at else None,
            updated_at=parse_utc(updated_at) if updated_at else None
        )

    def _participant_to_item(self, participant: Participant) -> dict:
        return {
            'participant_id': participant.participant_id,
            'event_id': participant.event_id,
            'name': participant.name,
            'email': participant.email,
            'rsvp_status': participant.rsvp_status
        }

    def _item_to_participant(self, item: dict) -> Participant:
        return Participant(
            participant_id=item['participant_id'],
            event_id=item['event_id'],
            name=item.get('name', ''),
            email=item['email'],
            rsvp_status=item.get('rsvp_status', DEFAULT_RSVP_STATUS)
        )
