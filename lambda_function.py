"""AWS Lambda handler for the event scheduling service."""
import json
import logging
import time
from typing import Any, Callable, Dict, Tuple

from scheduler.config import SchedulerConfig
from scheduler.errors import InvalidRequest, SchedulingError
from scheduler.event_service import EventService
from scheduler.models import CreateEventRequest, EditEventRequest
from storage.dynamodb_store import DynamoDBEventStore


ERROR_STATUS_CODES = {
    'NotFound': 404,
    'Unauthorized': 403
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    RESERVED = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via extra."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in self.RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _require(payload: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if payload.get(name) in (None, '')]
    if missing:
        raise InvalidRequest(
            f"Missing required field(s): {', '.join(missing)}",
            fields=missing
        )


def _create_event(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    _require(payload, 'creator_email', 'title', 'start_time', 'end_time', 'time_zone')
    request = CreateEventRequest.from_dict(payload)
    result = service.create_event(request)

    if isinstance(result, list):
        return 201, {
            'message': 'Recurring Events Responses',
            'events': [outcome.to_dict() for outcome in result]
        }
    return (201 if result.success else 400), result.to_dict()


def _get_event(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    _require(payload, 'event_id')
    event = service.get_event(str(payload['event_id']))
    return 200, {'success': True, 'event': event.to_dict()}


def _list_events(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    events = service.list_events()
    return 200, {'success': True, 'events': [e.to_dict() for e in events]}


def _events_for_user(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    _require(payload, 'email')
    events = service.events_for_user(payload['email'])
    return 200, {'success': True, 'events': [e.to_dict() for e in events]}


def _update_event(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    _require(payload, 'event_id', 'creator_email', 'country')
    event = service.edit_event(
        str(payload['event_id']),
        EditEventRequest.from_dict(payload)
    )
    return 200, {'message': 'Event updated successfully!', 'event': event.to_dict()}


def _delete_event(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    _require(payload, 'event_id', 'creator_email')
    event = service.delete_event(str(payload['event_id']), payload['creator_email'])
    return 200, {
        'success': True,
        'message': 'Event deleted successfully (soft delete)',
        'event': event.to_dict(include_participants=False)
    }


def _rsvp(service: EventService, payload: Dict[str, Any]) -> Tuple[int, Dict]:
    _require(payload, 'event_id', 'email', 'rsvp_status')
    event, participant = service.rsvp(
        str(payload['event_id']),
        payload['email'],
        payload['rsvp_status']
    )
    return 200, {
        'message': 'RSVP updated successfully',
        'event': event.to_dict(include_participants=False),
        'participant': participant.to_dict()
    }


ACTIONS: Dict[str, Callable[[EventService, Dict[str, Any]], Tuple[int, Dict]]] = {
    'create_event': _create_event,
    'get_event': _get_event,
    'list_events': _list_events,
    'events_for_user': _events_for_user,
    'update_event': _update_event,
    'delete_event': _delete_event,
    'rsvp': _rsvp
}


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body, default=str)}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for event scheduling.

    Args:
        event: Invocation payload {"action": ..., "payload": {...}}
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    config = SchedulerConfig.from_env()

    # Initialize logging
    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    action = event.get('action')
    payload = event.get('payload') or {}

    logger.info(
        "Lambda execution started",
        extra={
            'action': action,
            'events_table': config.events_table_name,
            'participants_table': config.participants_table_name
        }
    )

    try:
        handler = ACTIONS.get(action)
        if handler is None:
            raise InvalidRequest(
                f"Unknown action '{action}'",
                action=action,
                supported_actions=sorted(ACTIONS)
            )

        store = DynamoDBEventStore(
            events_table_name=config.events_table_name,
            participants_table_name=config.participants_table_name
        )
        service = EventService(store, config)

        status_code, body = handler(service, payload)

        duration = time.time() - start_time
        logger.info(
            "Lambda execution completed",
            extra={
                'action': action,
                'status_code': status_code,
                'duration_seconds': round(duration, 2)
            }
        )
        return _response(status_code, body)

    except SchedulingError as e:
        duration = time.time() - start_time
        status_code = ERROR_STATUS_CODES.get(e.kind, 400)
        logger.warning(
            f"Request rejected: {e.kind}: {e.message}",
            extra={
                'action': action,
                'status_code': status_code,
                'duration_seconds': round(duration, 2)
            }
        )
        return _response(status_code, {'success': False, 'error': e.to_dict()})

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'action': action,
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _response(500, {
            'message': 'Request failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })
