# src/modules/services/schemas.py
"""Services module Pydantic schemas."""

from typing import Optional, List
from datetime import date, time, datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from uuid import UUID
from enum import Enum


class ServiceStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class ServiceCreateRequest(BaseModel):
    """Request to book a new service for a client."""
    client_id: UUID
    service_date: date
    service_time: time
    service_type: str = Field(min_length=1, max_length=100)
    notes: Optional[str] = None


class ServiceItemCreateRequest(BaseModel):
    """Request to add a line item. Unit price defaults to the product price."""
    product_id: UUID
    quantity: int = Field(default=1, ge=1)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None
    # False leaves the price open until the item is finalized
    finalized: bool = True


class ServiceItemFinalizeRequest(BaseModel):
    """Set the final price of an open line item. Omitted fields keep their current value."""
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    discount: Optional[Decimal] = Field(default=None, ge=0)


class PaymentCreateRequest(BaseModel):
    """Request to record a received payment."""
    amount: Decimal = Field(gt=0)
    payment_method: str = Field(min_length=1, max_length=50)
    notes: Optional[str] = None


class PaymentStatusUpdateRequest(BaseModel):
    payment_status: PaymentStatus


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class ServiceItemRecord(BaseModel):
    """Line item with its product summary."""
    id: UUID
    product_id: UUID
    product_name: str
    product_type: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    subtotal: Optional[Decimal] = None


class ServiceRecord(BaseModel):
    """Plain service record published to projections and returned by the API."""
    id: UUID
    client_id: UUID
    client_name: str
    service_date: date
    service_time: time
    service_type: str
    status: ServiceStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    amount_paid: Decimal
    financially_closed: bool
    notes: Optional[str] = None
    created_by: UUID
    completed_by: Optional[UUID] = None
    completed_at: Optional[datetime] = None
    version: int
    items: List[ServiceItemRecord] = []


class ServiceActionResponse(BaseModel):
    """Generic response for service actions."""
    success: bool
    message: str
    service: Optional[ServiceRecord] = None
