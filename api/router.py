"""Minimal router for API Gateway proxy events."""
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from processor.errors import NotFoundError, SyncError, ValidationError

logger = logging.getLogger(__name__)

JSON_HEADERS = {'Content-Type': 'application/json'}


@dataclass
class ApiRequest:
    """Normalized view of an API Gateway request."""
    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)
    path_params: Dict[str, str] = field(default_factory=dict)

    def require(self, *names: str) -> List[Any]:
        """
        Return required body fields in order.

        Raises:
            ValidationError: If any field is missing or empty
        """
        missing = [n for n in names if self.body.get(n) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return [self.body[n] for n in names]

    def query_int(self, name: str, default: int) -> int:
        value = self.query.get(name)
        if value in (None, ''):
            return default
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"Query parameter {name} must be an integer")

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> 'ApiRequest':
        """Build a request from a REST (v1) or HTTP (v2) API Gateway event."""
        http = event.get('requestContext', {}).get('http', {})
        method = (event.get('httpMethod') or http.get('method') or 'GET').upper()
        path = event.get('path') or event.get('rawPath') or '/'

        return cls(
            method=method,
            path=path.rstrip('/') or '/',
            query=dict(event.get('queryStringParameters') or {}),
            body=_parse_body(event, method)
        )


def _parse_body(event: Dict[str, Any], method: str) -> Dict[str, Any]:
    raw = event.get('body')
    if not raw or method == 'GET':
        return {}
    if event.get('isBase64Encoded'):
        try:
            raw = base64.b64decode(raw, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValidationError('Body is not valid base64-encoded UTF-8') from e

    try:
        body = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON body: {e.msg}") from e
    if not isinstance(body, dict):
        raise ValidationError('JSON body must be an object')
    return body


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def json_response(status_code: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': JSON_HEADERS,
        'body': json.dumps(payload, default=_json_default)
    }


def error_response(error: SyncError) -> Dict[str, Any]:
    payload = {'success': False, 'error': error.message}
    payload.update(error.details)
    return json_response(error.status_code, payload)


Handler = Callable[[ApiRequest], Any]


class Router:
    """Maps method and path templates such as ``/api/sync-logs/{sessionId}`` to handlers."""

    def __init__(self):
        self._routes: List[Tuple[str, re.Pattern, Handler]] = []

    def add(self, method: str, template: str, handler: Handler) -> None:
        pattern = re.sub(r'\{(\w+)\}', r'(?P<\1>[^/]+)', template)
        self._routes.append((method.upper(), re.compile(f"^{pattern}$"), handler))

    def resolve(self, method: str, path: str) -> Tuple[Handler, Dict[str, str]]:
        """
        Find the handler for a request.

        Raises:
            NotFoundError: If no route matches the path
            ValidationError: If the path exists but not for this method
        """
        path_matched = False
        for route_method, pattern, handler in self._routes:
            match = pattern.match(path)
            if not match:
                continue
            path_matched = True
            if route_method == method:
                return handler, match.groupdict()

        if path_matched:
            raise ValidationError(f"Method {method} not allowed for {path}")
        raise NotFoundError(f"No route for {method} {path}")

    def dispatch(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle an API Gateway proxy event.

        Handlers return either a payload dict (sent with status 200) or a
        ``(status_code, payload)`` tuple. ``success`` defaults to True.

        Args:
            event: API Gateway proxy event

        Returns:
            API Gateway proxy response
        """
        try:
            request = ApiRequest.from_event(event)
            handler, request.path_params = self.resolve(request.method, request.path)
            outcome = handler(request)
        except SyncError as e:
            log = logger.warning if e.status_code < 500 else logger.error
            log(f"Request failed with {e.status_code}: {e.message}")
            return error_response(e)
        except Exception as e:
            logger.error(f"Unhandled error processing request: {e}", exc_info=True)
            return json_response(500, {'success': False, 'error': 'Internal server error'})

        status_code, payload = outcome if isinstance(outcome, tuple) else (200, outcome)
        payload = dict(payload)
        payload.setdefault('success', True)
        return json_response(status_code, payload)


def parse_date(value: Optional[str], name: str) -> Optional[date]:
    """
    Parse an optional ISO date request field.

    Raises:
        ValidationError: If the value is not a YYYY-MM-DD date
    """
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)")


def parse_hours(value: Any) -> Optional[float]:
    """
    Parse an optional positive hours request field.

    Raises:
        ValidationError: If the value is not a positive number
    """
    if value is None:
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError('hours must be a number')
    if hours <= 0:
        raise ValidationError('hours must be positive')
    return hours
