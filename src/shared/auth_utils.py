"""
Identity helpers for API Gateway events
The Cognito authorizer validates the token; handlers only read what it passed on
"""
from typing import Any, Dict, Optional


def get_header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup"""
    headers = event.get('headers') or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def extract_bearer_token(event: Dict[str, Any]) -> Optional[str]:
    """
    Get the identity token from the Authorization header

    Accepts both "Bearer <token>" and a bare token, which is what the Cognito
    authorizer forwards. Returns None when no token is present.
    """
    auth_header = (get_header(event, 'Authorization') or '').strip()

    # Remove 'Bearer' scheme if present
    scheme, _, token = auth_header.partition(' ')
    if scheme.lower() == 'bearer':
        auth_header = token.strip()

    return auth_header or None


def extract_user_from_cognito_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Extract user information from a Cognito-authorized Lambda event"""
    request_context = event.get('requestContext') or {}
    authorizer = request_context.get('authorizer') or {}
    claims = authorizer.get('claims') or {}

    if not claims:
        return {'valid': False, 'error': 'No Cognito claims found'}

    return {
        'valid': True,
        'user_id': claims.get('sub'),
        'email': claims.get('email'),
        'username': claims.get('cognito:username'),
        'claims': claims
    }
