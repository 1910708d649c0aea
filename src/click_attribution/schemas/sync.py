"""Export sync schemas"""
from typing import List, Optional
from pydantic import BaseModel


class SyncResponse(BaseModel):
    count: int
    marked: int
    success: bool
    skipped: bool
    attempts: int
    duration_ms: int
    timestamp: str
    errors: Optional[List[str]] = None
    retryable: Optional[bool] = None
    updated_range: Optional[str] = None


class SyncStatusResponse(BaseModel):
    pending: int
    running: bool
    last_result: Optional[SyncResponse] = None
