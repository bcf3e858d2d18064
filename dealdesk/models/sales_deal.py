"""
DealDesk - Sales Deal (denormalized projection of a finance deal, keyed by VIN)
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel


class SalesDealStatus(str, Enum):
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CustomerType(str, Enum):
    INDIVIDUAL = "individual"
    DEALER = "dealer"
    BUSINESS = "business"


class StageHistoryEntry(BaseModel):
    stage: str
    entered_at: str
    exited_at: Optional[str] = None
    duration_hours: int = 0
    notes: str = ""


class SalesPerson(BaseModel):
    id: Optional[str] = None
    name: str
    email: str
    phone: Optional[str] = None


class SalesStageChange(BaseModel):
    stage: str
    notes: Optional[str] = ""


class SalesStatusChange(BaseModel):
    status: SalesDealStatus
