"""
Common utility functions for Lambda handlers.
"""
import json
from decimal import Decimal
from typing import Any, Dict, Optional

from shared.errors import QualifyFirstError
from shared.logging import logger


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Money keeps its cents; whole counts become ints
            if o % 1 == 0 and o.as_tuple().exponent >= 0:
                return int(o)
            return float(o)
        return super().default(o)


CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Credentials': True,
}


def format_response(
    status_code: int,
    body: Any,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """
    Format a standard API Gateway response with CORS headers.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON serialized)
        headers: Additional headers to include

    Returns:
        API Gateway response dict
    """
    default_headers = dict(CORS_HEADERS)
    default_headers['Content-Type'] = 'application/json'

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': json.dumps(body, cls=DecimalEncoder)
    }


def text_response(status_code: int, body: str) -> Dict[str, Any]:
    """Plain-text response, as survey providers expect for postback acks."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'text/plain',
            'Cache-Control': 'no-cache',
        },
        'body': body
    }


def error_response(error: QualifyFirstError) -> Dict[str, Any]:
    """Map a classified error to its HTTP answer."""
    return format_response(error.status_code, {'error': error.message})


def internal_error(message: str, error: Exception) -> Dict[str, Any]:
    logger.exception(f"{message}: {error}")
    return format_response(500, {'error': 'Internal server error'})


def parse_body(event: dict) -> dict:
    """
    Safely parse JSON body from API Gateway event.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        Parsed body dict or empty dict if invalid
    """
    try:
        body = event.get('body') or '{}'
        if isinstance(body, str):
            parsed = json.loads(body)
        else:
            parsed = body
        return parsed if isinstance(parsed, dict) else {}
    except (json.JSONDecodeError, TypeError):
        return {}


def get_path_param(event: dict, param_name: str) -> Optional[str]:
    """Extract path parameter from event."""
    try:
        return event['pathParameters'][param_name]
    except (KeyError, TypeError):
        return None


def get_query_params(event: dict) -> Dict[str, str]:
    """All query string parameters (API Gateway sends None when there are none)."""
    return dict(event.get('queryStringParameters') or {})


def get_query_param(event: dict, param_name: str, default: str = None) -> Optional[str]:
    """Extract query string parameter from event."""
    return get_query_params(event).get(param_name, default)


def get_header(event: dict, name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = event.get('headers') or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def get_http_method(event: dict) -> str:
    method = event.get('httpMethod')
    if not method:
        method = ((event.get('requestContext') or {}).get('http') or {}).get('method', '')
    return (method or '').upper()
