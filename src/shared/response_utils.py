"""
HTTP response utilities for Lambda functions
"""
import json
from typing import Any, Dict, Optional

STATUS_OK = 'ok'
STATUS_ERROR = 'error'
GENERIC_ERROR_MESSAGE = 'some error happened'


def create_response(
    status_code: int,
    body: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Create standardized HTTP response for API Gateway"""
    default_headers = {
        'Content-Type': 'application/json',
    }

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': json.dumps(body, default=str)  # default=str handles datetime serialization
    }


def create_success_response(message: Any) -> Dict[str, Any]:
    """Create success response (200)"""
    return create_response(200, {'status': STATUS_OK, 'message': message})


def create_error_response(status_code: int, message: str) -> Dict[str, Any]:
    """Create error response"""
    return create_response(status_code, {'status': STATUS_ERROR, 'message': message})


def create_unauthorized_response(message: str = 'Unauthorized') -> Dict[str, Any]:
    """Create unauthorized response (401)"""
    return create_error_response(401, message)


def create_internal_error_response() -> Dict[str, Any]:
    """Create internal server error response (500) without internal detail"""
    return create_error_response(500, GENERIC_ERROR_MESSAGE)
