"""Tenant database connection model."""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, func
from indexer.db.base import Base


class DatabaseConnection(Base):
    """Connection descriptor for a tenant-owned external Postgres database.

    ``password_encrypted`` holds the vault blob; the plaintext is never stored
    and the blob never leaves the service layer.
    """
    __tablename__ = "database_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=5432)
    username = Column(String(255), nullable=False)
    password_encrypted = Column(Text, nullable=False)
    database_name = Column(String(255), nullable=False)
    ssl = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Fields whose change requires a fresh liveness test
    CONNECTION_FIELDS = ("host", "port", "username", "password", "database_name", "ssl")
