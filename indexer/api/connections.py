"""Database connections API router."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from indexer.db.session import get_db
from indexer.schemas.schemas import (
    ConnectionCreate, ConnectionUpdate, ConnectionOut,
    ConnectionTestRequest, ConnectionTestResponse, MessageResponse,
)
from indexer.services.connection_service import connection_service
from indexer.core.security import get_current_user_id

router = APIRouter(prefix="/db-connections", tags=["db-connections"])


@router.get("/", response_model=List[ConnectionOut])
async def list_connections(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """List the caller's connections."""
    return connection_service.list_by_owner(db, user_id)


@router.post("/", response_model=ConnectionOut, status_code=status.HTTP_201_CREATED)
def create_connection(
    body: ConnectionCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Test the credentials and store the connection."""
    return connection_service.create(db, user_id, body)


@router.post("/test", response_model=ConnectionTestResponse)
def test_connection(
    body: ConnectionTestRequest,
    user_id: int = Depends(get_current_user_id),
):
    """Check credentials without storing anything."""
    return ConnectionTestResponse(success=connection_service.test_connection(body.model_dump()))


@router.get("/{connection_id}", response_model=ConnectionOut)
async def get_connection(
    connection_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return connection_service.get(db, connection_id, user_id)


@router.put("/{connection_id}", response_model=ConnectionOut)
def update_connection(
    connection_id: int,
    body: ConnectionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Partially update a connection; re-tested if connection fields changed."""
    return connection_service.update(db, connection_id, user_id, body)


@router.delete("/{connection_id}", response_model=MessageResponse)
async def delete_connection(
    connection_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    connection_service.delete(db, connection_id, user_id)
    return MessageResponse(message="Connection deleted successfully")
