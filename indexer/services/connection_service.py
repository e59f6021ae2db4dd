"""Connection registry: CRUD and liveness tests for tenant databases."""

import logging
from typing import Dict, Any, List

from sqlalchemy.orm import Session

from indexer.connectors.postgres import get_connector
from indexer.core.crypto import get_vault
from indexer.core.exceptions import ConnectionTestFailed, NotFoundError
from indexer.models.connection import DatabaseConnection
from indexer.schemas.schemas import ConnectionCreate, ConnectionUpdate, ConnectionOut

logger = logging.getLogger(__name__)

CONNECTION_TEST_FAILED = "Could not connect to database with provided credentials"


class ConnectionService:
    """Manages tenant connection descriptors.

    Public operations return ``ConnectionOut``, which has no password field;
    the encrypted blob stays inside this module and the processors.
    """

    @staticmethod
    def test_connection(config: Dict[str, Any]) -> bool:
        """Open a throwaway connection, run SELECT 1, and close it."""
        with get_connector("postgres") as connector:
            connector.connect(config)
            return connector.test_connection()

    @staticmethod
    def to_public(connection: DatabaseConnection) -> ConnectionOut:
        return ConnectionOut.model_validate(connection)

    @staticmethod
    def get_owned(db: Session, connection_id: int, owner_id: int) -> DatabaseConnection:
        """Get a connection row, hiding other owners' rows as not found."""
        connection = db.query(DatabaseConnection).filter(
            DatabaseConnection.id == connection_id,
            DatabaseConnection.owner_id == owner_id,
        ).first()
        if not connection:
            raise NotFoundError("Connection not found")
        return connection

    @staticmethod
    def load_config(connection: DatabaseConnection) -> Dict[str, Any]:
        """Connector config with the password decrypted. Keep it short-lived."""
        return {
            "host": connection.host,
            "port": connection.port,
            "username": connection.username,
            "password": get_vault().decrypt(connection.password_encrypted),
            "database_name": connection.database_name,
            "ssl": connection.ssl,
        }

    @staticmethod
    def create(db: Session, owner_id: int, data: ConnectionCreate) -> ConnectionOut:
        """Test the credentials, then persist with the password encrypted."""
        config = data.model_dump(exclude={"name"})
        if not ConnectionService.test_connection(config):
            logger.info(
                "Connection test failed for owner %s: %s:%s/%s",
                owner_id, data.host, data.port, data.database_name,
            )
            raise ConnectionTestFailed(CONNECTION_TEST_FAILED)

        connection = DatabaseConnection(
            owner_id=owner_id,
            name=data.name,
            host=data.host,
            port=data.port,
            username=data.username,
            password_encrypted=get_vault().encrypt(data.password),
            database_name=data.database_name,
            ssl=data.ssl,
        )
        db.add(connection)
        db.commit()
        db.refresh(connection)
        return ConnectionService.to_public(connection)

    @staticmethod
    def update(
        db: Session, connection_id: int, owner_id: int, patch: ConnectionUpdate
    ) -> ConnectionOut:
        """Apply a partial update, re-testing only if connection fields changed."""
        connection = ConnectionService.get_owned(db, connection_id, owner_id)
        changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}

        current = ConnectionService.load_config(connection)
        affecting = {
            field: value
            for field, value in changes.items()
            if field in DatabaseConnection.CONNECTION_FIELDS and current.get(field) != value
        }
        if affecting:
            if not ConnectionService.test_connection({**current, **affecting}):
                raise ConnectionTestFailed(CONNECTION_TEST_FAILED)

        for field, value in changes.items():
            if field == "password":
                connection.password_encrypted = get_vault().encrypt(value)
            else:
                setattr(connection, field, value)
        db.commit()
        db.refresh(connection)
        return ConnectionService.to_public(connection)

    @staticmethod
    def delete(db: Session, connection_id: int, owner_id: int) -> None:
        """Delete a connection. Jobs using it stay and their writes start failing."""
        connection = ConnectionService.get_owned(db, connection_id, owner_id)
        db.delete(connection)
        db.commit()

    @staticmethod
    def get(db: Session, connection_id: int, owner_id: int) -> ConnectionOut:
        return ConnectionService.to_public(ConnectionService.get_owned(db, connection_id, owner_id))

    @staticmethod
    def list_by_owner(db: Session, owner_id: int) -> List[ConnectionOut]:
        connections = (
            db.query(DatabaseConnection)
            .filter(DatabaseConnection.owner_id == owner_id)
            .order_by(DatabaseConnection.id)
            .all()
        )
        return [ConnectionService.to_public(c) for c in connections]


connection_service = ConnectionService()
