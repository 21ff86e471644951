"""
Secrets Manager client for the main Lambda function
Retrieves the database credential secret by ARN
"""
import json
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.config import DEFAULT_REGION
from shared.errors import MalformedSecretError, SecretFetchError

logger = logging.getLogger(__name__)

# Friendly messages for the Secrets Manager error codes we expect to see
ERROR_MESSAGES = {
    'DecryptionFailureException': 'Cannot decrypt secret. Check KMS permissions.',
    'InternalServiceErrorException': 'AWS service error retrieving secret',
    'InvalidParameterException': 'Invalid secret identifier',
    'InvalidRequestException': 'Invalid request for secret',
    'ResourceNotFoundException': 'Secret not found',
    'AccessDeniedException': 'Access denied to secret',
}


class SecretsManagerClient:
    """Client for reading JSON secrets from AWS Secrets Manager"""

    def __init__(self, region: str = None, endpoint_url: Optional[str] = None):
        """
        Initialize Secrets Manager client

        Args:
            region: AWS region (defaults to ap-northeast-1)
            endpoint_url: Custom endpoint for LocalStack (optional)
        """
        self.region = region or DEFAULT_REGION
        self.endpoint_url = endpoint_url

        client_config = {
            'region_name': self.region
        }

        if self.endpoint_url:
            client_config['endpoint_url'] = self.endpoint_url
            logger.info(f"Using custom Secrets Manager endpoint: {self.endpoint_url}")

        self.client = boto3.client('secretsmanager', **client_config)

    def get_secret(self, secret_id: str) -> Dict[str, Any]:
        """
        Retrieve a secret and parse its JSON payload

        Args:
            secret_id: Name or ARN of the secret

        Returns:
            Dictionary containing the secret data

        Raises:
            SecretFetchError: If the secret cannot be retrieved
            MalformedSecretError: If the secret is not a JSON object
        """
        try:
            logger.info(f"Retrieving secret: {secret_id}")
            response = self.client.get_secret_value(SecretId=secret_id)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            message = ERROR_MESSAGES.get(error_code, f'Unexpected error retrieving secret ({error_code})')
            logger.error(f"{message}: {secret_id}")
            raise SecretFetchError(f"{message}: {secret_id}") from e
        except BotoCoreError as e:
            logger.error(f"Network error retrieving secret {secret_id}: {type(e).__name__}")
            raise SecretFetchError(f"Could not reach Secrets Manager for {secret_id}") from e

        secret_string = response.get('SecretString')
        if secret_string is None:
            raise MalformedSecretError(f"Secret {secret_id} has no string value")

        try:
            secret_data = json.loads(secret_string)
        except json.JSONDecodeError:
            logger.error(f"Secret {secret_id} is not valid JSON")
            raise MalformedSecretError(f"Secret {secret_id} contains invalid JSON") from None

        if not isinstance(secret_data, dict):
            raise MalformedSecretError(f"Secret {secret_id} is not a JSON object")

        logger.info(f"Successfully retrieved secret: {secret_id}")
        return secret_data
