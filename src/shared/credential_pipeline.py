"""
Database client construction for the main Lambda function.

In managed mode (production, with a secret ARN and an RDS Proxy endpoint
configured) the credential secret is fetched once per runtime instance,
turned into a MySQL connection URL and bound to a SQLAlchemy engine. The
engine is kept in an instance-scoped cache so warm invocations reuse its
connection pool instead of fetching the secret again.

In local mode a fresh engine is built from DATABASE_URL on every call and is
never cached. Local development is not performance sensitive, and keeping the
two paths separate keeps the managed cache the only long-lived state.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from shared.config import RuntimeConfig, get_config
from shared.errors import ClientBuildError, MalformedSecretError
from shared.secrets_client import SecretsManagerClient

logger = logging.getLogger(__name__)

CONNECTION_SCHEME = 'mysql'
MYSQL_DRIVER = 'mysql+pymysql'
REQUIRED_SECRET_FIELDS = ('username', 'password', 'port', 'dbname')


@dataclass(frozen=True)
class DatabaseCredentials:
    """Connection parameters read from the credential secret"""
    username: str
    password: str = field(repr=False)
    port: int
    dbname: str

    @classmethod
    def from_secret(cls, payload: Dict[str, Any]) -> 'DatabaseCredentials':
        """
        Build credentials from the secret payload

        Raises:
            MalformedSecretError: If a field is missing or has the wrong type
        """
        missing = [name for name in REQUIRED_SECRET_FIELDS if payload.get(name) in (None, '')]
        if missing:
            raise MalformedSecretError(f"Secret is missing fields: {', '.join(missing)}")

        try:
            port = int(payload['port'])
        except (TypeError, ValueError):
            raise MalformedSecretError("Secret field 'port' is not a number") from None

        return cls(
            username=str(payload['username']),
            password=str(payload['password']),
            port=port,
            dbname=str(payload['dbname']),
        )


def encode_password(password: str) -> str:
    """Percent-encode every reserved character so the password survives URL parsing"""
    return quote(password, safe='')


def build_connection_url(credentials: DatabaseCredentials, host: str) -> str:
    """mysql://<username>:<encodedPassword>@<host>:<port>/<dbname>"""
    return (
        f"{CONNECTION_SCHEME}://{credentials.username}:{encode_password(credentials.password)}"
        f"@{host}:{credentials.port}/{credentials.dbname}"
    )


def create_client(connection_url: str) -> Engine:
    """
    Create a SQLAlchemy engine bound to connection_url using the PyMySQL driver

    Raises:
        ClientBuildError: If the URL or driver is unusable
    """
    try:
        url = make_url(connection_url).set(drivername=MYSQL_DRIVER)
        return create_engine(
            url,
            pool_size=1,
            max_overflow=2,
            pool_pre_ping=True,  # Proxy may drop idle connections
            pool_recycle=1800,
        )
    except (ArgumentError, SQLAlchemyError, ImportError, ValueError) as e:
        raise ClientBuildError(f"Could not create database client: {type(e).__name__}") from e


class ClientCache:
    """
    Holds the database client for the lifetime of one runtime instance.

    The client is only stored after it has been built successfully, so a
    failed or aborted build leaves the cache empty and the next invocation
    starts over.
    """

    def __init__(self):
        self._client: Optional[Any] = None

    @property
    def is_built(self) -> bool:
        return self._client is not None

    def get(self) -> Optional[Any]:
        return self._client

    def get_or_build(self, factory: Callable[[], Any]) -> Any:
        if self._client is None:
            client = factory()
            self._client = client
        return self._client

    def holds(self, client: Any) -> bool:
        return self._client is not None and self._client is client

    def reset(self) -> None:
        """Drop the cached client (instance recycled)"""
        client, self._client = self._client, None
        if client is not None and hasattr(client, 'dispose'):
            client.dispose()


class CredentialPipeline:
    """Resolves the configured credentials into a database client"""

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        secrets_client: Optional[SecretsManagerClient] = None,
        client_factory: Callable[[str], Any] = create_client,
        cache: Optional[ClientCache] = None,
    ):
        self.config = config or get_config()
        self.client_factory = client_factory
        self.cache = cache or ClientCache()
        self._secrets_client = secrets_client

    @property
    def managed(self) -> bool:
        return self.config.is_managed()

    @property
    def secrets_client(self) -> SecretsManagerClient:
        if self._secrets_client is None:
            self._secrets_client = SecretsManagerClient(
                region=self.config.region,
                endpoint_url=self.config.endpoint_url
            )
        return self._secrets_client

    def get_client(self) -> Any:
        """
        Get the database client for this invocation

        Managed mode returns the cached client, building it on the first call.
        Local mode always builds a new client.
        """
        if not self.managed:
            logger.info("Local mode: creating database client from default settings")
            return self.client_factory(self.config.database_url)

        if not self.cache.is_built:
            logger.info("Cold start: resolving database credentials")
        return self.cache.get_or_build(self._build_managed_client)

    def resolve_connection_url(self) -> str:
        """Fetch the secret and assemble the connection URL for the proxy"""
        payload = self.secrets_client.get_secret(self.config.secret_arn)
        credentials = DatabaseCredentials.from_secret(payload)
        logger.info(
            f"Resolved credentials for database {credentials.dbname} "
            f"via {self.config.proxy_endpoint}:{credentials.port}"
        )
        return build_connection_url(credentials, self.config.proxy_endpoint)

    def release(self, client: Any) -> None:
        """Release invocation-scoped resources; the cached client stays alive"""
        if client is None or self.cache.holds(client):
            return
        if hasattr(client, 'dispose'):
            client.dispose()

    def _build_managed_client(self) -> Any:
        return self.client_factory(self.resolve_connection_url())


# Instance-scoped pipeline, created on the first invocation of this runtime
_pipeline: Optional[CredentialPipeline] = None


def get_pipeline() -> CredentialPipeline:
    """Get the pipeline for this runtime instance, creating it on cold start"""
    global _pipeline
    if _pipeline is None:
        _pipeline = CredentialPipeline()
    return _pipeline


def reset_pipeline() -> None:
    """Forget the pipeline and its cached client, as a recycled instance would"""
    global _pipeline
    if _pipeline is not None:
        _pipeline.cache.reset()
    _pipeline = None
