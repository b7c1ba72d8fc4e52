"""AWS Lambda handler for rental calendar sync."""
import json
import logging
import time
from typing import Any, Dict

from api.assignment_routes import AssignmentRoutes
from api.event_routes import EventRoutes
from api.listing_routes import ListingRoutes
from api.router import Router, json_response
from api.services import build_services
from api.sync_routes import SyncRoutes
from config.settings import load_config

# Attributes every LogRecord has; anything else was passed through ``extra``
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
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


def build_router(services) -> Router:
    router = Router()
    SyncRoutes(services).register(router)
    AssignmentRoutes(services).register(router)
    ListingRoutes(services).register(router)
    EventRoutes(services).register(router)
    return router


def _is_scheduled_event(event: Dict[str, Any]) -> bool:
    return event.get('source') == 'aws.events' or event.get('detail-type') == 'Scheduled Event'


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    API Gateway proxy events are routed to the HTTP handlers; EventBridge
    scheduled events run the automatic all-listings sync.

    Args:
        event: API Gateway proxy event or EventBridge event payload
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    config = load_config()

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        services = build_services(config)
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        return json_response(500, {'success': False, 'error': 'Internal server error'})

    router = build_router(services)

    if _is_scheduled_event(event):
        logger.info('Scheduled sync triggered', extra={'table_prefix': config.table_prefix})
        response = router.dispatch({
            'httpMethod': 'GET',
            'path': '/api/cron/sync-ical-feeds',
            'queryStringParameters': {'cron': 'true'}
        })
    else:
        response = router.dispatch(event)

    logger.info(
        'Lambda execution completed',
        extra={
            'status_code': response['statusCode'],
            'duration_seconds': round(time.time() - start_time, 2)
        }
    )
    return response
