"""
Main Lambda Function
Handles GET /hello behind the Cognito authorizer
Connects to Aurora MySQL through RDS Proxy using the credential pipeline
"""
import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from shared.auth_utils import extract_bearer_token, extract_user_from_cognito_event
from shared.config import get_config
from shared.credential_pipeline import get_pipeline
from shared.errors import CredentialError
from shared.response_utils import (
    create_internal_error_response,
    create_success_response,
    create_unauthorized_response
)

logger = logging.getLogger(__name__)
logger.setLevel(get_config().log_level)


def lambda_handler(event, context):
    """
    Handle API requests

    The database client is built on cold start and reused while the instance
    stays warm. Failures answer with a generic 500 and leave nothing cached,
    so the next invocation retries from the secret.
    """
    if not extract_bearer_token(event):
        return create_unauthorized_response('Unauthorized - No identity token found')

    user = extract_user_from_cognito_event(event)
    if user['valid']:
        logger.info(f"Request from user {user['user_id']}")

    pipeline = get_pipeline()
    client = None
    try:
        client = pipeline.get_client()
        run_main(client)
        return create_success_response('hello world')

    except CredentialError as e:
        logger.error(f"Credential resolution failed: {e}")
        return create_internal_error_response()

    except OperationalError as e:
        # Connection refused or credentials rotated since the secret was read
        logger.error(f"Database connection failed: {type(e).__name__}")
        pipeline.cache.reset()
        return create_internal_error_response()

    except Exception as e:
        logger.error(f"Main handler error: {type(e).__name__}: {e}", exc_info=True)
        return create_internal_error_response()

    finally:
        pipeline.release(client)


def run_main(client):
    """Run the invocation's work on a pooled connection, returned to the pool on exit"""
    with client.connect() as connection:
        connection.execute(text("SELECT 1"))
