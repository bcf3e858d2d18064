"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DealDesk - Seller Upload Token                                              ║
║                                                                              ║
║  Short-lived capability binding a seller email to one deal.                  ║
║                                                                              ║
║  INVARIANT:                                                                  ║
║  - valid  <=>  is_active AND upload_attempts < max AND now < expires_at      ║
║  - reaching max attempts deactivates the token                               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, field_validator

from dealdesk.config import now_utc, parse_iso


class DealKind(str, Enum):
    FINANCE = "finance"
    SALES = "sales"


class UploadToken(BaseModel):
    token: str
    deal_id: str
    deal_kind: DealKind = DealKind.FINANCE
    seller_email: str
    vehicle_info: str
    vin: str
    created_at: datetime
    expires_at: datetime
    upload_attempts: int = 0
    max_upload_attempts: int = 3
    is_active: bool = True
    last_used: Optional[datetime] = None

    @field_validator("created_at", "expires_at", "last_used", mode="before")
    @classmethod
    def aware_datetime(cls, v):
        return parse_iso(v)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or now_utc()
        return (
            self.is_active
            and self.upload_attempts < self.max_upload_attempts
            and now < self.expires_at
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or now_utc()) >= self.expires_at

    def register_attempt(self, now: Optional[datetime] = None) -> "UploadToken":
        self.upload_attempts += 1
        self.last_used = now or now_utc()
        if self.upload_attempts >= self.max_upload_attempts:
            self.is_active = False
        return self

    def to_document(self) -> dict:
        return self.model_dump(mode="json")


class UploadLinkRequest(BaseModel):
    deal_id: str
    deal_kind: DealKind = DealKind.FINANCE
    seller_email: str
    vehicle_info: str
    vin: str
