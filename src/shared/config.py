"""
Configuration management for the main Lambda function
Handles environment variables that select managed or local credential resolution
"""
import logging
import os
from typing import Mapping, Optional

DEFAULT_REGION = 'ap-northeast-1'
DEFAULT_LOCAL_DATABASE_URL = 'mysql://root@localhost:3306/demo'
MANAGED_ENV_NAME = 'production'
DEFAULT_LOG_LEVEL = 'INFO'


def resolve_log_level(name: Optional[str]) -> str:
    """Upper-cased logging level name; unknown names fall back to INFO"""
    level = (name or DEFAULT_LOG_LEVEL).strip().upper()
    if isinstance(logging.getLevelName(level), int):
        return level
    return DEFAULT_LOG_LEVEL


class RuntimeConfig:
    """Runtime configuration read from environment variables"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        env = os.environ if environ is None else environ

        self.env_name = env.get('ENV_NAME', 'local')
        self.secret_arn = env.get('SECRET_MANAGER_ARN') or None
        self.proxy_endpoint = env.get('RDS_PROXY_ENDPOINT') or None
        self.region = env.get('AWS_REGION', DEFAULT_REGION)
        self.endpoint_url = env.get('AWS_ENDPOINT_URL') or None  # LocalStack
        self.database_url = env.get('DATABASE_URL', DEFAULT_LOCAL_DATABASE_URL)
        self.log_level = resolve_log_level(env.get('LOG_LEVEL'))

    def is_managed(self) -> bool:
        """Managed mode needs the production flag plus a secret and a proxy endpoint"""
        return (
            self.env_name == MANAGED_ENV_NAME
            and bool(self.secret_arn)
            and bool(self.proxy_endpoint)
        )

    def __repr__(self) -> str:
        return (
            f"RuntimeConfig(env_name={self.env_name!r}, managed={self.is_managed()}, "
            f"region={self.region!r})"
        )


def get_config(environ: Optional[Mapping[str, str]] = None) -> RuntimeConfig:
    """Read the runtime configuration"""
    return RuntimeConfig(environ)
