"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DealDesk - Sales Deal Materializer                                          ║
║                                                                              ║
║  Every finance deal (deals) should have AT MOST ONE sales deal               ║
║  (salesdeals) sharing its VIN.                                               ║
║                                                                              ║
║  - VIN already present in salesdeals  -> skip                                ║
║  - otherwise                          -> build + insert                      ║
║  - one failing record never stops the batch                                  ║
║  - the unique index on salesdeals.vin turns a concurrent double insert       ║
║    into DuplicateKeyError, counted as a skip                                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from pymongo.errors import DuplicateKeyError

from dealdesk.config import get_settings, new_id, now_utc
from dealdesk.models.deal import clean_vin
from dealdesk.models.sales_deal import CustomerType, SalesPerson, StageHistoryEntry
from dealdesk.services.stage_normalizer import normalize_stage, normalize_priority

logger = logging.getLogger("sales_materializer")

ESTIMATED_COMPLETION_DAYS = 14
LIST_PRICE_MARKUP = 1.1
DEFAULT_CUSTOMER_NAME = "Auto-created from Finance"

CUSTOMER_TYPE_BY_PARTY = {
    "dealer": CustomerType.DEALER,
    "private": CustomerType.INDIVIDUAL,
    "auction": CustomerType.BUSINESS,
}


async def get_default_sales_person(db) -> Dict[str, Any]:
    """First active sales user, else a 'Sales Team' placeholder."""
    user = await db.users.find_one({"role": "sales", "is_active": True}, {"_id": 0})
    if user:
        person = SalesPerson(
            id=user.get("id"),
            name=user.get("name") or user.get("email") or "Sales",
            email=user.get("email") or "",
            phone=user.get("phone"),
        )
    else:
        org = get_settings().organization
        person = SalesPerson(name="Sales Team", email=org.email, phone=org.phone)
    return person.model_dump()


def _stock_number(finance_deal: dict, now: datetime) -> str:
    stock = finance_deal.get("stock_number")
    if stock and stock != "N/A":
        return stock
    return f"SALES-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


def _customer_from_seller(seller: Optional[dict]) -> dict:
    seller = seller or {}
    contact = seller.get("contact") or {}
    return {
        "name": seller.get("name") or DEFAULT_CUSTOMER_NAME,
        "type": CUSTOMER_TYPE_BY_PARTY.get(seller.get("type") or "dealer", CustomerType.DEALER).value,
        "contact": {
            "email": contact.get("email") or seller.get("email"),
            "phone": contact.get("phone") or seller.get("phone"),
        },
    }


def build_sales_deal(finance_deal: dict, sales_person: dict, now: Optional[datetime] = None) -> dict:
    """
    Builds the salesdeals document mirroring a finance deal.

    Raises UnknownStageError / UnknownPriorityError when the finance deal
    carries a value with no canonical mapping.
    """
    now = now or now_utc()
    now_str = now.isoformat()

    raw_stage = finance_deal.get("current_stage")
    stage = normalize_stage(raw_stage).value
    priority = normalize_priority(finance_deal.get("priority")).value

    year = finance_deal.get("year")
    make = finance_deal.get("make")
    model = finance_deal.get("model")
    vehicle = finance_deal.get("vehicle") or " ".join(str(p) for p in (year, make, model) if p)

    purchase_price = finance_deal.get("purchase_price")
    list_price = finance_deal.get("list_price")
    if not list_price and purchase_price:
        list_price = round(purchase_price * LIST_PRICE_MARKUP, 2)

    return {
        "id": new_id(),
        "source_deal_id": finance_deal.get("id"),
        "vehicle": vehicle,
        "vin": clean_vin(finance_deal.get("vin")),
        "stock_number": _stock_number(finance_deal, now),
        "year": year,
        "make": make,
        "model": model,

        "sales_person": sales_person,
        "customer": _customer_from_seller(finance_deal.get("seller")),

        "financial": {
            "purchase_price": purchase_price,
            "list_price": list_price,
        },
        "timeline": {
            "purchase_date": finance_deal.get("purchase_date") or finance_deal.get("created_at") or now_str,
            "estimated_completion_date": (now + timedelta(days=ESTIMATED_COMPLETION_DAYS)).isoformat(),
        },

        "current_stage": stage,
        "previous_stage": None,
        "stage_history": [StageHistoryEntry(
            stage=stage,
            entered_at=now_str,
            notes=f"Auto-created from finance deal stage: {raw_stage}",
        ).model_dump()],

        "priority": priority,
        "status": "active",

        "created_at": finance_deal.get("created_at") or now_str,
        "updated_at": now_str,
    }


async def materialize_sales_deals(db, sales_person: Optional[dict] = None) -> Dict[str, Any]:
    """
    Creates the missing sales deals for every finance deal.

    Returns: {"total", "created", "skipped", "errors", "error_details"}
    """
    sales_person = sales_person or await get_default_sales_person(db)

    finance_deals = await db.deals.find({}, {"_id": 0}).to_list(None)
    existing = await db.salesdeals.find({}, {"_id": 0, "vin": 1}).to_list(None)
    existing_vins = {clean_vin(d.get("vin")) for d in existing if d.get("vin")}

    logger.info(
        f"[MATERIALIZE] {len(finance_deals)} finance deals, "
        f"{len(existing_vins)} sales deals already present"
    )

    report = {"total": len(finance_deals), "created": 0, "skipped": 0, "errors": 0, "error_details": []}

    for finance_deal in finance_deals:
        vin = clean_vin(finance_deal.get("vin"))
        try:
            if not vin:
                raise ValueError(f"finance deal {finance_deal.get('id')} has no VIN")

            if vin in existing_vins:
                report["skipped"] += 1
                continue

            sales_deal = build_sales_deal(finance_deal, sales_person)
            try:
                await db.salesdeals.insert_one(sales_deal)
            except DuplicateKeyError:
                logger.warning(f"[MATERIALIZE] VIN {vin} inserted concurrently, skipping")
                existing_vins.add(vin)
                report["skipped"] += 1
                continue

            existing_vins.add(vin)
            report["created"] += 1
            logger.info(
                f"[MATERIALIZE] Created sales deal for VIN {vin} "
                f"({finance_deal.get('current_stage')} -> {sales_deal['current_stage']})"
            )
        except Exception as e:
            report["errors"] += 1
            report["error_details"].append({"deal_id": finance_deal.get("id"), "vin": vin, "error": str(e)})
            logger.error(f"[MATERIALIZE] Error for VIN {vin or '?'}: {e}")

    logger.info(
        f"[MATERIALIZE] Done: created={report['created']} skipped={report['skipped']} "
        f"errors={report['errors']}"
    )
    return report


async def materialize_for_deal(db, finance_deal: dict, sales_person: Optional[dict] = None) -> Optional[dict]:
    """
    Single-deal variant used right after a finance deal is created.
    Returns the new sales deal, or None when one already exists for the VIN.
    """
    vin = clean_vin(finance_deal.get("vin"))
    if await db.salesdeals.find_one({"vin": vin}, {"_id": 0, "id": 1}):
        return None

    sales_person = sales_person or await get_default_sales_person(db)
    sales_deal = build_sales_deal(finance_deal, sales_person)
    try:
        await db.salesdeals.insert_one(sales_deal)
    except DuplicateKeyError:
        logger.warning(f"[MATERIALIZE] VIN {vin} inserted concurrently, skipping")
        return None

    sales_deal.pop("_id", None)
    logger.info(f"[MATERIALIZE] Created sales deal {sales_deal['id']} for VIN {vin}")
    return sales_deal
