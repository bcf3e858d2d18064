"""
DealDesk - Routes Dealers (CRM)
"""

import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from dealdesk.config import get_db, new_id, now_iso
from dealdesk.models.dealer import DealerCreate, DealerUpdate
from dealdesk.routes.auth import require_api_key
from dealdesk.services.dealer_registry import normalize_address, get_dealer_performance
from dealdesk.services.event_logger import log_event

router = APIRouter(prefix="/dealers", tags=["Dealers"])


def _contact_document(contact: dict) -> dict:
    contact = dict(contact or {})
    if contact.get("email"):
        contact["email"] = contact["email"].strip().lower()
    contact["address"] = normalize_address(contact.get("address"))
    return contact


@router.get("")
async def list_dealers(
    search: Optional[str] = None,
    status: Optional[str] = None,
    tier: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"company": pattern}, {"contact.email": pattern}]
    if status:
        query["status"] = status
    if tier:
        query["tier"] = tier

    dealers = await db.dealers.find(query, {"_id": 0}).sort("name", 1).skip(skip).limit(limit).to_list(limit)
    total = await db.dealers.count_documents(query)
    return {"dealers": dealers, "count": len(dealers), "total": total}


@router.get("/{dealer_id}")
async def get_dealer(dealer_id: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    dealer = await db.dealers.find_one({"id": dealer_id}, {"_id": 0})
    if not dealer:
        raise HTTPException(status_code=404, detail="Dealer not found")
    dealer["performance"] = await get_dealer_performance(db, dealer_id)
    return dealer


@router.post("")
async def create_dealer(data: DealerCreate, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    name = data.name.strip()
    existing = await db.dealers.find_one(
        {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}, {"_id": 0, "id": 1}
    )
    if existing:
        raise HTTPException(status_code=409, detail=f"Dealer '{name}' already exists")

    dealer = data.model_dump(mode="json")
    dealer.update({
        "id": new_id(),
        "name": name,
        "contact": _contact_document(dealer.get("contact")),
        "performance": {"total_deals": 0, "total_volume": 0.0},
        "created_at": now_iso(),
        "updated_at": now_iso(),
    })
    await db.dealers.insert_one(dealer)
    dealer.pop("_id", None)

    await log_event(db, "create_dealer", "dealer", dealer["id"], user=caller["name"])
    return {"success": True, "dealer": dealer}


@router.put("/{dealer_id}")
async def update_dealer(
    dealer_id: str,
    data: DealerUpdate,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    if not await db.dealers.find_one({"id": dealer_id}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=404, detail="Dealer not found")

    update = data.model_dump(mode="json", exclude_unset=True)
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "contact" in update:
        update["contact"] = _contact_document(update["contact"])
    update["updated_at"] = now_iso()

    await db.dealers.update_one({"id": dealer_id}, {"$set": update})
    await log_event(db, "update_dealer", "dealer", dealer_id, user=caller["name"],
                    details={"fields": sorted(k for k in update if k != "updated_at")})
    return await db.dealers.find_one({"id": dealer_id}, {"_id": 0})


@router.delete("/{dealer_id}")
async def delete_dealer(dealer_id: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    result = await db.dealers.delete_one({"id": dealer_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Dealer not found")
    await log_event(db, "delete_dealer", "dealer", dealer_id, user=caller["name"])
    return {"success": True}
