"""Shared fixtures for scheduler tests."""
import boto3
import pytest
from moto import mock_aws

from scheduler.config import SchedulerConfig
from scheduler.event_service import EventService
from scheduler.models import CreateEventRequest, ParticipantInput
from storage.dynamodb_store import DynamoDBEventStore
from storage.memory_store import InMemoryEventStore


EVENTS_TABLE = 'test-scheduler-events'
PARTICIPANTS_TABLE = 'test-scheduler-participants'


@pytest.fixture
def store():
    """Empty in-memory event store."""
    return InMemoryEventStore()


@pytest.fixture
def config():
    """Default configuration: Japan and India capped at 3 events per week."""
    return SchedulerConfig()


@pytest.fixture
def service(store, config):
    """EventService over the in-memory store."""
    return EventService(store, config)


@pytest.fixture
def make_request():
    """Factory for creation requests with sensible defaults."""
    def _make(**overrides):
        data = {
            'creator_email': 'host@example.com',
            'title': 'Team sync meeting',
            'start_time': '2024-11-06T06:15:00.000Z',
            'end_time': '2024-11-06T07:15:00.000Z',
            'time_zone': 'UTC',
            'country': 'Germany',
            'description': 'Weekly alignment',
            'location': 'Room 4',
            'participants': [
                ParticipantInput(name='Alice', email='alice@example.com'),
                ParticipantInput(name='Bob', email='bob@example.com')
            ]
        }
        data.update(overrides)
        return CreateEventRequest(**data)

    return _make


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches real AWS."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb_tables(aws_credentials):
    """Create mock events and participants tables."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        events = dynamodb.create_table(
            TableName=EVENTS_TABLE,
            KeySchema=[
                {'AttributeName': 'event_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'creator_email', 'AttributeType': 'S'},
                {'AttributeName': 'start_time', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'creator-start-index',
                    'KeySchema': [
                        {'AttributeName': 'creator_email', 'KeyType': 'HASH'},
                        {'AttributeName': 'start_time', 'KeyType': 'RANGE'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        participants = dynamodb.create_table(
            TableName=PARTICIPANTS_TABLE,
            KeySchema=[
                {'AttributeName': 'participant_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'participant_id', 'AttributeType': 'S'},
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'email', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'event-index',
                    'KeySchema': [
                        {'AttributeName': 'event_id', 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                },
                {
                    'IndexName': 'email-index',
                    'KeySchema': [
                        {'AttributeName': 'email', 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb, events, participants


@pytest.fixture
def dynamodb_store(dynamodb_tables):
    """DynamoDBEventStore over the mock tables."""
    dynamodb, _, _ = dynamodb_tables
    return DynamoDBEventStore(EVENTS_TABLE, PARTICIPANTS_TABLE, dynamodb=dynamodb)
