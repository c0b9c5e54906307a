from datetime import datetime

from pydantic import BaseModel


class CeisaConnectionStatus(BaseModel):
    connected: bool
    mode: str
    http_status: int | None = None
    response_time_ms: int | None = None
    error: str | None = None
    checked_at: datetime


class HealthResponse(BaseModel):
    status: str
    database: str
    ceisa_mode: str
    ceisa: CeisaConnectionStatus
    timestamp: datetime
    environment: str
    version: str
