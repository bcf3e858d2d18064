"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DealDesk - Models Package                                                   ║
║                                                                              ║
║  from dealdesk.models import DealStage, FinanceDealCreate, UploadToken, ...  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Finance deal + shared workflow vocabulary
from .deal import (
    DealStage,
    Priority,
    PartyType,
    DealType,
    DealSubType,
    WHOLESALE_DEAL_TYPES,
    clean_vin,
    Address,
    PartyContact,
    PartyInfo,
    FinanceDealCreate,
    FinanceDealUpdate,
    StageChange,
)

# Sales deal
from .sales_deal import (
    SalesDealStatus,
    CustomerType,
    StageHistoryEntry,
    SalesPerson,
    SalesStageChange,
    SalesStatusChange,
)

# Dealer CRM
from .dealer import (
    DealerStatus,
    DealerContact,
    DealerCreate,
    DealerUpdate,
)

# Seller upload
from .upload_token import (
    DealKind,
    UploadToken,
    UploadLinkRequest,
)

__all__ = [
    # Deal
    "DealStage",
    "Priority",
    "PartyType",
    "DealType",
    "DealSubType",
    "WHOLESALE_DEAL_TYPES",
    "clean_vin",
    "Address",
    "PartyContact",
    "PartyInfo",
    "FinanceDealCreate",
    "FinanceDealUpdate",
    "StageChange",
    # Sales deal
    "SalesDealStatus",
    "CustomerType",
    "StageHistoryEntry",
    "SalesPerson",
    "SalesStageChange",
    "SalesStatusChange",
    # Dealer
    "DealerStatus",
    "DealerContact",
    "DealerCreate",
    "DealerUpdate",
    # Upload
    "DealKind",
    "UploadToken",
    "UploadLinkRequest",
]
