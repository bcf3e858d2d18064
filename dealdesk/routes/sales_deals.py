"""
DealDesk - Routes Sales Deals
Sales-side view of the deals, kept in step with finance by VIN.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from dealdesk.config import get_db, now_iso
from dealdesk.models.sales_deal import SalesStageChange, SalesStatusChange
from dealdesk.routes.auth import require_api_key
from dealdesk.services.event_logger import log_event
from dealdesk.services.stage_normalizer import UnknownStageError, normalize_stage
from dealdesk.services.status_sync import apply_stage_transition, sync_sales_to_finance

router = APIRouter(prefix="/sales-deals", tags=["Sales Deals"])
logger = logging.getLogger("sales_deals")


async def get_sales_deal_or_404(db, sales_deal_id: str) -> dict:
    sales_deal = await db.salesdeals.find_one({"id": sales_deal_id}, {"_id": 0})
    if not sales_deal:
        raise HTTPException(status_code=404, detail="Sales deal not found")
    return sales_deal


@router.get("")
async def list_sales_deals(
    stage: Optional[str] = None,
    status: Optional[str] = None,
    sales_person_id: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    query = {}
    if stage:
        try:
            query["current_stage"] = normalize_stage(stage).value
        except UnknownStageError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if status:
        query["status"] = status
    if sales_person_id:
        query["sales_person.id"] = sales_person_id

    sales_deals = await db.salesdeals.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.salesdeals.count_documents(query)
    return {"sales_deals": sales_deals, "count": len(sales_deals), "total": total}


@router.get("/{sales_deal_id}")
async def get_sales_deal(sales_deal_id: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    return await get_sales_deal_or_404(db, sales_deal_id)


@router.put("/{sales_deal_id}/stage")
async def change_sales_stage(
    sales_deal_id: str,
    data: SalesStageChange,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    """Advances the sales deal; the finance deal follows."""
    sales_deal = await get_sales_deal_or_404(db, sales_deal_id)
    try:
        stage = normalize_stage(data.stage).value
    except UnknownStageError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if sales_deal.get("current_stage") == stage:
        return {"success": True, "changed": False, "sales_deal": sales_deal}

    update = apply_stage_transition(sales_deal, stage, notes=data.notes)
    await db.salesdeals.update_one({"id": sales_deal_id}, {"$set": update})
    finance_deal = await sync_sales_to_finance(db, sales_deal_id)

    await log_event(
        db, "change_stage", "sales_deal", sales_deal_id, user=caller["name"],
        details={"old_value": sales_deal.get("current_stage"), "new_value": stage},
        related={"vin": sales_deal.get("vin"), "deal_id": finance_deal["id"] if finance_deal else None}
    )

    return {
        "success": True,
        "changed": True,
        "sales_deal": await db.salesdeals.find_one({"id": sales_deal_id}, {"_id": 0}),
        "finance_deal_stage": finance_deal.get("current_stage") if finance_deal else None,
    }


@router.put("/{sales_deal_id}/status")
async def change_sales_status(
    sales_deal_id: str,
    data: SalesStatusChange,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    sales_deal = await get_sales_deal_or_404(db, sales_deal_id)
    await db.salesdeals.update_one(
        {"id": sales_deal_id},
        {"$set": {"status": data.status.value, "updated_at": now_iso()}}
    )
    await log_event(
        db, "change_status", "sales_deal", sales_deal_id, user=caller["name"],
        details={"old_value": sales_deal.get("status"), "new_value": data.status.value}
    )
    return {"success": True, "status": data.status.value}
