"""Abstract base class for tenant database connectors."""

from abc import ABC, abstractmethod
from typing import Dict, Any, Iterator


class ConnectorBase(ABC):
    """Base class for outbound connectors to tenant-owned databases.

    A connector is short-lived: ``connect`` builds its pool, the caller works
    inside ``begin`` blocks, and ``close`` releases every pooled connection.
    Used as a context manager, ``close`` is guaranteed on exit.
    """

    @abstractmethod
    def connect(self, config: Dict[str, Any]) -> None:
        """Initialize the connection pool from a plaintext connection config."""
        ...

    @abstractmethod
    def test_connection(self) -> bool:
        """Run a trivial query; return False instead of raising on failure."""
        ...

    @abstractmethod
    def begin(self) -> Iterator[Any]:
        """Context manager yielding a connection inside a transaction."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Dispose of the pool and every connection it holds."""
        ...

    @property
    @abstractmethod
    def connector_type(self) -> str:
        """Return the connector type identifier (e.g., 'postgres')."""
        ...

    def __enter__(self) -> "ConnectorBase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
