"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DealDesk - Finance Deal                                                     ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. vin is the join key with salesdeals (17 chars, stored upper-case)        ║
║  2. current_stage / priority are stored in canonical form only               ║
║  3. seller / buyer are optional and loosely shaped (legacy data)             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, Field, field_validator


class DealStage(str, Enum):
    """
    Canonical workflow stages, shared by finance and sales deals.
    Declaration order is the workflow order.
    """
    CONTRACT_RECEIVED = "contract-received"
    DOCS_SIGNED = "docs-signed"
    TITLE_PROCESSING = "title-processing"
    PAYMENT_APPROVED = "payment-approved"
    FUNDS_DISBURSED = "funds-disbursed"
    TITLE_RECEIVED = "title-received"
    DEAL_COMPLETE = "deal-complete"


class Priority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PartyType(str, Enum):
    DEALER = "dealer"
    PRIVATE = "private"
    AUCTION = "auction"


class DealType(str, Enum):
    WHOLESALE = "wholesale"
    WHOLESALE_D2D = "wholesale-d2d"
    WHOLESALE_PP = "wholesale-pp"
    WHOLESALE_FLIP = "wholesale-flip"
    RETAIL = "retail"
    RETAIL_PP = "retail-pp"
    CONSIGNMENT = "consignment"
    AUCTION = "auction"


class DealSubType(str, Enum):
    BUY = "buy"
    SALE = "sale"
    BUY_SELL = "buy-sell"


WHOLESALE_DEAL_TYPES = {
    DealType.WHOLESALE.value,
    DealType.WHOLESALE_D2D.value,
    DealType.WHOLESALE_PP.value,
    DealType.WHOLESALE_FLIP.value,
}


def clean_vin(vin: str) -> str:
    return (vin or "").strip().upper()


class Address(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""


class PartyContact(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    # Legacy records hold either a structured address or a single line
    address: Optional[Union[Address, str]] = None
    license_number: Optional[str] = None


class PartyInfo(BaseModel):
    """Seller or buyer block embedded in a deal"""
    name: Optional[str] = None
    type: PartyType = PartyType.DEALER
    dealer_id: Optional[str] = None
    company: Optional[str] = None
    license_number: Optional[str] = None
    tier: Optional[str] = None
    contact: PartyContact = Field(default_factory=PartyContact)


class FinanceDealCreate(BaseModel):
    vin: str
    year: int
    make: str
    model: str
    vehicle: Optional[str] = None
    stock_number: Optional[str] = None
    color: Optional[str] = None
    mileage: Optional[int] = None

    purchase_price: Optional[float] = None
    list_price: Optional[float] = None
    wholesale_price: Optional[float] = None

    seller: Optional[PartyInfo] = None
    buyer: Optional[PartyInfo] = None

    deal_type: DealType = DealType.RETAIL
    deal_subtype: DealSubType = DealSubType.BUY

    # Free-form on input, normalized before storage
    current_stage: Optional[str] = None
    priority: Optional[str] = None

    purchase_date: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("vin")
    @classmethod
    def vin_must_be_17_chars(cls, v: str) -> str:
        v = clean_vin(v)
        if len(v) != 17:
            raise ValueError("VIN must be 17 characters long")
        return v


class FinanceDealUpdate(BaseModel):
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    vehicle: Optional[str] = None
    stock_number: Optional[str] = None
    color: Optional[str] = None
    mileage: Optional[int] = None
    purchase_price: Optional[float] = None
    list_price: Optional[float] = None
    wholesale_price: Optional[float] = None
    seller: Optional[PartyInfo] = None
    buyer: Optional[PartyInfo] = None
    deal_type: Optional[DealType] = None
    deal_subtype: Optional[DealSubType] = None
    priority: Optional[str] = None
    notes: Optional[str] = None


class StageChange(BaseModel):
    stage: str
    notes: Optional[str] = ""
