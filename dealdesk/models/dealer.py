"""
DealDesk - Dealer CRM models
"""

from enum import Enum
from typing import Optional, List, Union
from pydantic import BaseModel, Field

from .deal import Address


class DealerStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING = "Pending"


class DealerContact(BaseModel):
    person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[Union[Address, str]] = None


class DealerCreate(BaseModel):
    name: str
    company: Optional[str] = ""
    type: str = "dealer"
    contact: DealerContact = Field(default_factory=DealerContact)
    license_number: Optional[str] = ""
    tier: str = "Tier 1"
    status: DealerStatus = DealerStatus.ACTIVE
    specialties: List[str] = Field(default_factory=list)
    notes: Optional[str] = ""


class DealerUpdate(BaseModel):
    name: Optional[str] = None
    company: Optional[str] = None
    type: Optional[str] = None
    contact: Optional[DealerContact] = None
    license_number: Optional[str] = None
    tier: Optional[str] = None
    status: Optional[DealerStatus] = None
    specialties: Optional[List[str]] = None
    notes: Optional[str] = None
