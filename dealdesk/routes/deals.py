"""
DealDesk - Routes Finance Deals

- CRUD on the deals collection
- Stage changes (workflow_history + sync to the sales deal)
- Dealer parties are linked to the dealers collection on write
- A sales deal is materialized as soon as a finance deal is created
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from dealdesk.config import get_db, new_id, now_iso
from dealdesk.models.deal import FinanceDealCreate, FinanceDealUpdate, StageChange, clean_vin
from dealdesk.routes.auth import require_api_key
from dealdesk.services.dealer_registry import DealerError, find_or_create_dealer, record_dealer_deal
from dealdesk.services.event_logger import log_event
from dealdesk.services.sales_materializer import materialize_for_deal
from dealdesk.services.stage_normalizer import (
    UnknownStageError,
    UnknownPriorityError,
    normalize_stage,
    normalize_priority,
    stage_progress,
)
from dealdesk.services.status_sync import finance_stage_update, sync_finance_to_sales

router = APIRouter(prefix="/deals", tags=["Deals"])
logger = logging.getLogger("deals")


# ==================== HELPERS ====================

async def link_party(db, party: Optional[dict]) -> Optional[dict]:
    """Links a dealer party to its dealers record. Registry failures keep the party as typed."""
    try:
        return await find_or_create_dealer(db, party)
    except DealerError as e:
        logger.warning(f"[DEALS] {e}")
        return party


def _normalized_or_400(stage=None, priority=None, check_stage=True, check_priority=True) -> dict:
    try:
        out = {}
        if check_stage:
            out["current_stage"] = normalize_stage(stage).value
        if check_priority:
            out["priority"] = normalize_priority(priority).value
        return out
    except (UnknownStageError, UnknownPriorityError) as e:
        raise HTTPException(status_code=400, detail=str(e))


async def get_deal_or_404(db, deal_id: str) -> dict:
    deal = await db.deals.find_one({"id": deal_id}, {"_id": 0})
    if not deal:
        raise HTTPException(status_code=404, detail="Deal not found")
    return deal


# ==================== LIST / GET ====================

@router.get("")
async def list_deals(
    stage: Optional[str] = None,
    priority: Optional[str] = None,
    deal_type: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    """Lists deals. stage/priority accept any known spelling."""
    query = {}
    if stage:
        query["current_stage"] = _normalized_or_400(stage=stage, check_priority=False)["current_stage"]
    if priority:
        query["priority"] = _normalized_or_400(priority=priority, check_stage=False)["priority"]
    if deal_type:
        query["deal_type"] = deal_type
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"vin": {"$regex": pattern, "$options": "i"}},
            {"stock_number": {"$regex": pattern, "$options": "i"}},
            {"vehicle": {"$regex": pattern, "$options": "i"}},
        ]

    deals = await db.deals.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.deals.count_documents(query)
    return {"deals": deals, "count": len(deals), "total": total}


@router.get("/{deal_id}")
async def get_deal(deal_id: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    deal = await get_deal_or_404(db, deal_id)
    try:
        deal["progress"] = stage_progress(deal.get("current_stage"))
    except UnknownStageError:
        deal["progress"] = None
    return deal


# ==================== CREATE ====================

@router.post("")
async def create_deal(data: FinanceDealCreate, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    """Creates a finance deal, then its sales deal."""
    workflow = _normalized_or_400(stage=data.current_stage, priority=data.priority)

    if await db.deals.find_one({"vin": data.vin}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=409, detail=f"A deal already exists for VIN {data.vin}")

    payload = data.model_dump(mode="json", exclude={"current_stage", "priority"})
    seller = await link_party(db, payload.pop("seller"))
    buyer = await link_party(db, payload.pop("buyer"))

    now = now_iso()
    deal = {
        "id": new_id(),
        **payload,
        "vehicle": payload.get("vehicle") or f"{data.year} {data.make} {data.model}",
        "seller": seller,
        "buyer": buyer,
        **workflow,
        "workflow_history": [{
            "stage": workflow["current_stage"],
            "previous_stage": "initial",
            "timestamp": now,
            "changed_by": caller["name"],
            "notes": "Deal created",
        }],
        "created_at": now,
        "updated_at": now,
    }
    await db.deals.insert_one(deal)
    deal.pop("_id", None)
    logger.info(f"[DEALS] Created deal {deal['id']} ({deal['vin']}) at {deal['current_stage']}")

    if seller and seller.get("dealer_id"):
        await record_dealer_deal(db, seller["dealer_id"], deal.get("purchase_price"))
    if buyer and buyer.get("dealer_id"):
        await record_dealer_deal(db, buyer["dealer_id"], deal.get("wholesale_price") or deal.get("purchase_price"))

    sales_deal = await materialize_for_deal(db, deal)

    await log_event(
        db, "create_deal", "deal", deal["id"], user=caller["name"],
        details={"stage": deal["current_stage"], "priority": deal["priority"]},
        related={"vin": deal["vin"], "sales_deal_id": sales_deal["id"] if sales_deal else None}
    )

    return {
        "success": True,
        "deal": deal,
        "sales_deal_id": sales_deal["id"] if sales_deal else None,
    }


# ==================== UPDATE / DELETE ====================

@router.put("/{deal_id}")
async def update_deal(
    deal_id: str,
    data: FinanceDealUpdate,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    await get_deal_or_404(db, deal_id)

    update = data.model_dump(mode="json", exclude_unset=True)
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")

    if "priority" in update:
        update["priority"] = _normalized_or_400(priority=update["priority"], check_stage=False)["priority"]
    if "seller" in update:
        update["seller"] = await link_party(db, update["seller"])
    if "buyer" in update:
        update["buyer"] = await link_party(db, update["buyer"])

    update["updated_at"] = now_iso()
    await db.deals.update_one({"id": deal_id}, {"$set": update})

    await log_event(db, "update_deal", "deal", deal_id, user=caller["name"],
                    details={"fields": sorted(k for k in update if k != "updated_at")})

    return await db.deals.find_one({"id": deal_id}, {"_id": 0})


@router.delete("/{deal_id}")
async def delete_deal(deal_id: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    """Deletes the finance deal. The sales deal keeps its own lifecycle."""
    deal = await get_deal_or_404(db, deal_id)
    await db.deals.delete_one({"id": deal_id})
    await log_event(db, "delete_deal", "deal", deal_id, user=caller["name"],
                    related={"vin": deal.get("vin")})
    logger.info(f"[DEALS] Deleted deal {deal_id} ({deal.get('vin')})")
    return {"success": True}


# ==================== STAGE ====================

@router.put("/{deal_id}/stage")
async def change_stage(
    deal_id: str,
    data: StageChange,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    """Moves a deal to a new stage and propagates it to the sales deal (same VIN)."""
    deal = await get_deal_or_404(db, deal_id)
    stage = _normalized_or_400(stage=data.stage, check_priority=False)["current_stage"]

    if deal.get("current_stage") == stage:
        return {"success": True, "changed": False, "deal": deal}

    update = finance_stage_update(deal, stage, notes=data.notes, changed_by=caller["name"])
    await db.deals.update_one({"id": deal_id}, update)
    sales_deal = await sync_finance_to_sales(db, deal_id)

    await log_event(
        db, "change_stage", "deal", deal_id, user=caller["name"],
        details={"old_value": deal.get("current_stage"), "new_value": stage, "notes": data.notes},
        related={"vin": clean_vin(deal.get("vin")), "sales_deal_id": sales_deal["id"] if sales_deal else None}
    )

    updated = await db.deals.find_one({"id": deal_id}, {"_id": 0})
    return {
        "success": True,
        "changed": True,
        "deal": updated,
        "sales_deal_stage": sales_deal.get("current_stage") if sales_deal else None,
    }
