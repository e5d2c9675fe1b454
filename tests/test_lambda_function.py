"""Integration tests for Lambda handler."""
import json
import logging
import os
from unittest.mock import Mock, patch

import pytest

from lambda_function import JsonFormatter, lambda_handler, setup_logging
from storage.memory_store import InMemoryEventStore


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'EVENTS_TABLE_NAME': 'test-scheduler-events',
        'PARTICIPANTS_TABLE_NAME': 'test-scheduler-participants',
        'LOG_LEVEL': 'INFO',
        'RESTRICTED_COUNTRIES': 'Japan,India',
        'WEEKLY_EVENT_LIMIT': '3'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def store():
    """Store shared across invocations of one test."""
    return InMemoryEventStore()


@pytest.fixture
def invoke(mock_env, mock_context, store):
    """Invoke the handler with DynamoDB replaced by the in-memory store."""
    with patch('lambda_function.DynamoDBEventStore') as mock_store_class:
        mock_store_class.return_value = store

        def _invoke(action, payload=None):
            event = {'action': action}
            if payload is not None:
                event['payload'] = payload
            response = lambda_handler(event, mock_context)
            return response['statusCode'], json.loads(response['body'])

        _invoke.store_class = mock_store_class
        yield _invoke


@pytest.fixture
def create_payload():
    """Create a sample creation payload."""
    return {
        'creator_email': 'host@example.com',
        'title': 'Team sync meeting',
        'description': 'Weekly alignment',
        'start_time': '2024-11-06T06:15:00.000Z',
        'end_time': '2024-11-06T07:15:00.000Z',
        'time_zone': 'Asia/Kolkata',
        'country': 'India',
        'location': 'Room 4',
        'participants': [
            {'name': 'Alice', 'email': 'alice@example.com'},
            {'name': 'Bob', 'email': 'bob@example.com'}
        ]
    }


class TestCreateEvent:
    """Test cases for the create_event action."""

    def test_single_event_created(self, invoke, create_payload):
        """Test successful creation of a single event."""
        status, body = invoke('create_event', create_payload)

        assert status == 201
        assert body['success'] is True
        assert body['message'] == 'Event created successfully!'
        assert body['event']['start_time'] == '2024-11-06T06:15:00.000Z'
        assert body['event']['start_time_local'] == '2024-11-06 11:45:00'
        assert [p['email'] for p in body['participants']] == [
            'alice@example.com', 'bob@example.com'
        ]

        invoke.store_class.assert_called_once_with(
            events_table_name='test-scheduler-events',
            participants_table_name='test-scheduler-participants'
        )

    def test_recurring_event_created(self, invoke, create_payload):
        """Test that a recurring request returns one entry per occurrence."""
        create_payload.update(
            recurrence_type='daily',
            recurrence_end_date='2024-11-10T00:00:00.000Z'
        )

        status, body = invoke('create_event', create_payload)

        assert status == 201
        assert body['message'] == 'Recurring Events Responses'
        assert [e['success'] for e in body['events']] == [True, True, True, False]
        limited = body['events'][3]
        assert limited['status'] == 'limit_reached'
        assert limited['error']['kind'] == 'WeeklyLimitReached'
        assert limited['error']['message'] == (
            'Event creation limit reached for India. Only 3 events per week allowed.'
        )
        assert limited['event_data']['start_time'] == '2024-11-09T06:15:00.000Z'

    def test_overlapping_event_rejected(self, invoke, create_payload):
        """Test that a single overlapping event returns 400."""
        invoke('create_event', create_payload)
        create_payload.update(
            start_time='2024-11-06T07:00:00.000Z',
            end_time='2024-11-06T08:00:00.000Z'
        )

        status, body = invoke('create_event', create_payload)

        assert status == 400
        assert body['success'] is False
        assert body['error']['kind'] == 'Overlapping'
        assert body['error']['conflicts']['title'] == 'Team sync meeting'

    def test_validation_error(self, invoke, create_payload):
        """Test that request validation failures are a single 400 body."""
        create_payload['time_zone'] = 'Mars/Olympus'

        status, body = invoke('create_event', create_payload)

        assert status == 400
        assert body == {
            'success': False,
            'error': {
                'kind': 'InvalidTimezone',
                'message': 'Time zone should be a valid standard timezone string',
                'time_zone': 'Mars/Olympus'
            }
        }

    def test_zone_directory_name_rejected(self, invoke, create_payload):
        """Test that a tz database directory is not a usable zone."""
        create_payload['time_zone'] = 'America'

        status, body = invoke('create_event', create_payload)

        assert status == 400
        assert body['error']['kind'] == 'InvalidTimezone'

    @pytest.mark.parametrize('participant', [
        {'name': 'No Email'},
        {'name': 'Blank', 'email': ''},
        'carol@example.com'
    ])
    def test_malformed_participant(self, invoke, create_payload, participant):
        """Test that participants without an email are a 400."""
        create_payload['participants'].append(participant)

        status, body = invoke('create_event', create_payload)

        assert status == 400
        assert body['error']['kind'] == 'InvalidRequest'
        assert body['error']['fields'] == ['email']

    def test_missing_fields(self, invoke, create_payload):
        """Test that absent required fields are reported."""
        del create_payload['title']
        create_payload['end_time'] = ''

        status, body = invoke('create_event', create_payload)

        assert status == 400
        assert body['error']['kind'] == 'InvalidRequest'
        assert body['error']['fields'] == ['title', 'end_time']


class TestOtherActions:
    """Test cases for lookup, edit, delete and RSVP actions."""

    def _create(self, invoke, payload):
        _, body = invoke('create_event', payload)
        return body['event']['event_id']

    def test_get_event(self, invoke, create_payload):
        """Test fetching an event with its participants."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('get_event', {'event_id': event_id})

        assert status == 200
        assert body['event']['title'] == 'Team sync meeting'
        assert len(body['event']['participants']) == 2

    def test_get_missing_event(self, invoke):
        """Test that a missing event is 404."""
        status, body = invoke('get_event', {'event_id': '404'})

        assert status == 404
        assert body['error']['kind'] == 'NotFound'

    def test_list_and_user_events(self, invoke, create_payload):
        """Test listing and per-user lookup."""
        self._create(invoke, create_payload)

        status, body = invoke('list_events')
        assert status == 200
        assert len(body['events']) == 1

        status, body = invoke('events_for_user', {'email': 'bob@example.com'})
        assert status == 200
        assert body['events'][0]['creator_email'] == 'host@example.com'

        status, _ = invoke('events_for_user', {'email': 'nobody@example.com'})
        assert status == 404

    def test_update_event(self, invoke, create_payload):
        """Test editing title and participants."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('update_event', {
            'event_id': event_id,
            'creator_email': 'host@example.com',
            'country': 'India',
            'title': 'Renamed',
            'participants_to_add': [{'name': 'Carol', 'email': 'carol@example.com'}]
        })

        assert status == 200
        assert body['message'] == 'Event updated successfully!'
        assert body['event']['title'] == 'Renamed'
        assert len(body['event']['participants']) == 3

    def test_update_with_malformed_participant(self, invoke, create_payload):
        """Test that participants_to_add entries need an email."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('update_event', {
            'event_id': event_id,
            'creator_email': 'host@example.com',
            'country': 'India',
            'participants_to_add': [{'name': 'Carol'}]
        })

        assert status == 400
        assert body['error']['kind'] == 'InvalidRequest'

    def test_update_by_other_user(self, invoke, create_payload):
        """Test that edits by someone else are 403."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('update_event', {
            'event_id': event_id,
            'creator_email': 'alice@example.com',
            'country': 'India',
            'title': 'Mine now'
        })

        assert status == 403
        assert body['error']['kind'] == 'Unauthorized'

    def test_delete_event(self, invoke, create_payload):
        """Test soft delete through the handler."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('delete_event', {
            'event_id': event_id,
            'creator_email': 'host@example.com'
        })

        assert status == 200
        assert body['event']['is_deleted'] is True
        status, _ = invoke('get_event', {'event_id': event_id})
        assert status == 404

    def test_rsvp(self, invoke, create_payload):
        """Test RSVP through the handler."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('rsvp', {
            'event_id': event_id,
            'email': 'alice@example.com',
            'rsvp_status': 'accepted'
        })

        assert status == 200
        assert body['participant']['rsvp_status'] == 'accepted'

    def test_rsvp_invalid_status(self, invoke, create_payload):
        """Test that unknown RSVP values are 400."""
        event_id = self._create(invoke, create_payload)

        status, body = invoke('rsvp', {
            'event_id': event_id,
            'email': 'alice@example.com',
            'rsvp_status': 'maybe'
        })

        assert status == 400
        assert body['error']['kind'] == 'InvalidRsvpStatus'


class TestLambdaHandler:
    """Test cases for dispatch and failure handling."""

    def test_unknown_action(self, invoke):
        """Test that unsupported actions are rejected before touching storage."""
        status, body = invoke('reschedule_everything', {})

        assert status == 400
        assert body['error']['kind'] == 'InvalidRequest'
        assert 'create_event' in body['error']['supported_actions']
        invoke.store_class.assert_not_called()

    @patch('lambda_function.DynamoDBEventStore')
    def test_unexpected_failure(self, mock_store_class, mock_env, mock_context):
        """Test that storage failures become a 500 response."""
        mock_store = Mock()
        mock_store.list_active.side_effect = Exception('DynamoDB error')
        mock_store_class.return_value = mock_store

        response = lambda_handler({'action': 'list_events'}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Request failed'
        assert 'DynamoDB error' in body['error']
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    @patch('lambda_function.setup_logging')
    def test_logging_output(self, mock_setup_logging, invoke, create_payload, caplog):
        """Test that start and completion are logged."""
        with caplog.at_level(logging.INFO, logger='lambda_function'):
            status, _ = invoke('create_event', create_payload)

        assert status == 201
        mock_setup_logging.assert_called_once_with('INFO')
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        assert any('Lambda execution completed' in msg for msg in log_messages)


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_unknown_level(self):
        """Test that unknown levels fall back to INFO."""
        setup_logging('CHATTY')
        assert logging.getLogger().level == logging.INFO

    def test_json_formatter_includes_extra(self):
        """Test that fields passed via extra are rendered."""
        record = logging.makeLogRecord({
            'name': 'scheduler',
            'levelname': 'INFO',
            'msg': 'Created %d events',
            'args': (2,),
            'creator_email': 'host@example.com'
        })

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Created 2 events'
        assert data['level'] == 'INFO'
        assert data['creator_email'] == 'host@example.com'
        assert 'args' not in data
