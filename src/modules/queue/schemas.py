# src/modules/queue/schemas.py
"""Queue module Pydantic schemas."""

from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel
from uuid import UUID
from enum import Enum


class QueueStatus(str, Enum):
    WAITING = "waiting"
    ATTENDING = "attending"
    DONE = "done"


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class CheckInRequest(BaseModel):
    """Put a service in the queue. Queue date defaults to the clinic's today."""
    service_id: UUID
    queue_date: Optional[date] = None


class CallNextRequest(BaseModel):
    queue_date: Optional[date] = None


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class QueueEntryRecord(BaseModel):
    """Plain queue ticket record published to projections and returned by the API."""
    id: UUID
    service_id: UUID
    client_name: str
    queue_date: date
    queue_number: int
    status: QueueStatus
    called_at: Optional[datetime] = None
    withdrawn: bool = False
    version: int


class QueueActionResponse(BaseModel):
    """Generic response for queue actions."""
    success: bool
    message: str
    entry: Optional[QueueEntryRecord] = None
