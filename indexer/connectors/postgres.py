"""PostgreSQL tenant connector and connector registry."""

import logging
from contextlib import contextmanager
from typing import Dict, Any, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, URL
from sqlalchemy.exc import SQLAlchemyError

from indexer.connectors.base import ConnectorBase
from indexer.core.config import settings

logger = logging.getLogger(__name__)


class PostgresConnector(ConnectorBase):
    """Per-invocation pool against one tenant's Postgres database.

    Pools are never shared across jobs or tenants: credentials and hosts
    differ per tenant, so every processor run builds and disposes its own.
    """

    connector_type = "postgres"

    def __init__(self, pool_size: Optional[int] = None, connect_timeout: Optional[int] = None):
        self._engine: Optional[Engine] = None
        self._pool_size = pool_size or settings.TENANT_POOL_SIZE
        self._connect_timeout = connect_timeout or settings.CONNECTION_TEST_TIMEOUT_SECONDS

    @staticmethod
    def build_url(config: Dict[str, Any]) -> URL:
        """Build the connection URL. The result embeds the password; never log it."""
        return URL.create(
            "postgresql+psycopg2",
            username=config["username"],
            password=config["password"],
            host=config["host"],
            port=int(config.get("port") or 5432),
            database=config["database_name"],
        )

    def _create_engine(self, url: URL, ssl: bool) -> Engine:
        connect_args = {
            "connect_timeout": self._connect_timeout,
            "options": f"-c statement_timeout={settings.TENANT_STATEMENT_TIMEOUT_MS}",
            # Tenant servers often use self-signed certs; require encryption only
            "sslmode": "require" if ssl else "prefer",
        }
        return create_engine(
            url,
            pool_size=self._pool_size,
            max_overflow=0,
            pool_timeout=self._connect_timeout,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    def connect(self, config: Dict[str, Any]) -> None:
        self._engine = self._create_engine(self.build_url(config), bool(config.get("ssl")))

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Connector used before connect()")
        return self._engine

    def test_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            # Only the driver's error class: messages can echo the DSN
            logger.warning("Tenant database liveness test failed: %s", type(e.__cause__ or e).__name__)
            return False

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        with self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


# Connector registry
CONNECTOR_REGISTRY: Dict[str, type] = {
    "postgres": PostgresConnector,
}


def get_connector(connector_type: str = "postgres") -> ConnectorBase:
    """Get a connector instance by type."""
    cls = CONNECTOR_REGISTRY.get(connector_type)
    if not cls:
        raise ValueError(f"Unknown connector type: {connector_type}")
    return cls()
