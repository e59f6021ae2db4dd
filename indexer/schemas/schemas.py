"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr
from typing import Optional, List, Dict, Any, Union
from datetime import datetime

from indexer.models.job import JobType, JobStatus
from indexer.models.job_log import LogLevel


# ---- Connection ----
class ConnectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    host: str = Field(..., min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    username: str = Field(..., min_length=1)
    password: str
    database_name: str = Field(..., min_length=1)
    ssl: bool = False

class ConnectionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    host: Optional[str] = Field(None, min_length=1)
    port: Optional[int] = Field(None, ge=1, le=65535)
    username: Optional[str] = Field(None, min_length=1)
    password: Optional[str] = None
    database_name: Optional[str] = Field(None, min_length=1)
    ssl: Optional[bool] = None

class ConnectionTestRequest(BaseModel):
    host: str = Field(..., min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    username: str = Field(..., min_length=1)
    password: str
    database_name: str = Field(..., min_length=1)
    ssl: bool = False

class ConnectionTestResponse(BaseModel):
    success: bool

class ConnectionOut(BaseModel):
    """Public view of a connection. Deliberately has no password field."""
    id: int
    owner_id: int
    name: str
    host: str
    port: int
    username: str
    database_name: str
    ssl: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Job configuration, one shape per job type ----
class _JobConfigBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

class NftBidsConfig(_JobConfigBase):
    marketplace_addresses: List[StrictStr] = []
    collection_addresses: List[StrictStr] = []

class NftPricesConfig(_JobConfigBase):
    marketplace_addresses: List[StrictStr] = []
    collection_addresses: List[StrictStr] = []
    include_usd_prices: StrictBool = False

class TokenBorrowingConfig(_JobConfigBase):
    protocol_addresses: List[StrictStr] = []
    reserve_addresses: List[StrictStr] = []

class TokenPricesConfig(_JobConfigBase):
    dex_addresses: List[StrictStr] = []

JobConfig = Union[NftBidsConfig, NftPricesConfig, TokenBorrowingConfig, TokenPricesConfig]


# ---- Job ----
class JobCreate(BaseModel):
    db_connection_id: int
    job_type: str
    configuration: Dict[str, Any] = {}
    target_table: str = Field(..., min_length=1, max_length=128)

class JobStatusUpdate(BaseModel):
    status: str

class JobOut(BaseModel):
    id: int
    owner_id: int
    db_connection_id: Optional[int] = None
    job_type: JobType
    configuration: Dict[str, Any]
    target_table: str
    status: JobStatus
    webhook_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Job log ----
class JobLogOut(BaseModel):
    id: int
    job_id: int
    log_level: LogLevel
    message: str
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Webhook ingress ----
class WebhookAccepted(BaseModel):
    success: bool = True
    queued: bool = True


# ---- Generic ----
class MessageResponse(BaseModel):
    message: str
    detail: Optional[Any] = None
