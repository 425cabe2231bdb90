from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    destination: Optional[str] = None
    events: List[Dict[str, Any]] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    message: str
    processed: int = 0
    failed: int = 0


class EnvCheck(BaseModel):
    channel_secret: bool
    channel_token: bool
    store_url: bool


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    uptime_seconds: float
    services: Dict[str, str]
    env_check: EnvCheck
    statistics: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TableDiagnostics(BaseModel):
    accessible: bool
    count: Optional[int] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


class DbDiagnosticsResponse(BaseModel):
    timestamp: str
    connection: Dict[str, Any]
    tables: Dict[str, TableDiagnostics] = Field(default_factory=dict)
    performance: Dict[str, int] = Field(default_factory=dict)


class MemberProfile(BaseModel):
    userId: str = Field(..., min_length=1)
    displayName: Optional[str] = None
    pictureUrl: Optional[str] = None
    statusMessage: Optional[str] = None
    login_method: Optional[str] = "line"


class OperationResponse(BaseModel):
    success: bool
    data: Any = None
    message: Optional[str] = None
