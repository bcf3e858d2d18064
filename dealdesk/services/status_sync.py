"""
DealDesk - Status Sync

Keeps current_stage aligned between a finance deal (deals) and its sales
deal (salesdeals), matched by VIN. Both collections use the canonical
DealStage vocabulary; values that cannot be normalized are left alone and
logged.

No transactions: a failure between the two writes leaves the pair out of
sync until the next run.
"""

import logging
import math
from datetime import datetime
from typing import Optional, Dict, Any, Union

from dealdesk.config import now_utc, parse_iso
from dealdesk.models.deal import DealStage, clean_vin
from dealdesk.models.sales_deal import StageHistoryEntry
from dealdesk.services.stage_normalizer import normalize_stage, UnknownStageError

logger = logging.getLogger("status_sync")

SYNC_DIRECTIONS = ("both", "finance-to-sales", "sales-to-finance")


class SyncError(Exception):
    """Raised when a sync request cannot be served (no deal for the VIN, bad direction)"""
    pass


class InvalidSyncDirection(SyncError):
    pass


# ════════════════════════════════════════════════════════════════════════════
# STAGE HISTORY
# ════════════════════════════════════════════════════════════════════════════

def apply_stage_transition(
    sales_deal: dict,
    new_stage: Union[str, DealStage],
    notes: str = "",
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Moves a sales deal to new_stage. Closes the open history entry of the
    current stage and appends a new one; earlier entries are never rewritten.

    Returns the $set payload (the caller persists it).
    """
    now = now or now_utc()
    stage = normalize_stage(new_stage).value
    current = sales_deal.get("current_stage")

    history = [dict(entry) for entry in (sales_deal.get("stage_history") or [])]
    for entry in reversed(history):
        if entry.get("stage") == current and not entry.get("exited_at"):
            entered_at = parse_iso(entry.get("entered_at")) or now
            entry["exited_at"] = now.isoformat()
            entry["duration_hours"] = max(0, math.ceil((now - entered_at).total_seconds() / 3600))
            break

    history.append(StageHistoryEntry(stage=stage, entered_at=now.isoformat(), notes=notes or "").model_dump())

    return {
        "previous_stage": current,
        "current_stage": stage,
        "stage_history": history,
        "updated_at": now.isoformat(),
    }


def finance_stage_update(finance_deal: dict, new_stage: Union[str, DealStage], notes: str = "",
                         changed_by: str = "system", now: Optional[datetime] = None) -> Dict[str, Any]:
    """$set/$push payload recording a finance deal stage change in workflow_history."""
    now = now or now_utc()
    stage = normalize_stage(new_stage).value
    return {
        "$set": {"current_stage": stage, "updated_at": now.isoformat()},
        "$push": {"workflow_history": {
            "stage": stage,
            "previous_stage": finance_deal.get("current_stage") or "initial",
            "timestamp": now.isoformat(),
            "changed_by": changed_by,
            "notes": notes or "Stage updated",
        }},
    }


# ════════════════════════════════════════════════════════════════════════════
# ONE DEAL
# ════════════════════════════════════════════════════════════════════════════

async def sync_finance_to_sales(db, deal_id: str) -> Optional[dict]:
    """Copies the finance stage onto the sales deal. None if either side is missing."""
    finance_deal = await db.deals.find_one({"id": deal_id}, {"_id": 0})
    if not finance_deal:
        logger.info(f"[STATUS SYNC] Finance deal {deal_id} not found")
        return None

    vin = clean_vin(finance_deal.get("vin"))
    sales_deal = await db.salesdeals.find_one({"vin": vin}, {"_id": 0})
    if not sales_deal:
        logger.info(f"[STATUS SYNC] No sales deal found for VIN: {vin}")
        return None

    try:
        stage = normalize_stage(finance_deal.get("current_stage")).value
    except UnknownStageError as e:
        logger.warning(f"[STATUS SYNC] {e} on finance deal {deal_id}, not synced")
        return sales_deal

    if sales_deal.get("current_stage") == stage:
        return sales_deal

    logger.info(
        f"[STATUS SYNC] Sales deal {sales_deal['id']}: "
        f"'{sales_deal.get('current_stage')}' -> '{stage}'"
    )
    update = apply_stage_transition(sales_deal, stage, notes=f"Auto-synced from finance system: {stage}")
    await db.salesdeals.update_one({"id": sales_deal["id"]}, {"$set": update})
    sales_deal.update(update)
    return sales_deal


async def sync_sales_to_finance(db, sales_deal_id: str) -> Optional[dict]:
    """Copies the sales stage onto the finance deal. None if either side is missing."""
    sales_deal = await db.salesdeals.find_one({"id": sales_deal_id}, {"_id": 0})
    if not sales_deal:
        logger.info(f"[STATUS SYNC] Sales deal {sales_deal_id} not found")
        return None

    vin = clean_vin(sales_deal.get("vin"))
    finance_deal = await db.deals.find_one({"vin": vin}, {"_id": 0})
    if not finance_deal:
        logger.info(f"[STATUS SYNC] No finance deal found for VIN: {vin}")
        return None

    try:
        stage = normalize_stage(sales_deal.get("current_stage")).value
    except UnknownStageError as e:
        logger.warning(f"[STATUS SYNC] {e} on sales deal {sales_deal_id}, not synced")
        return finance_deal

    if finance_deal.get("current_stage") == stage:
        return finance_deal

    logger.info(
        f"[STATUS SYNC] Finance deal {finance_deal['id']}: "
        f"'{finance_deal.get('current_stage')}' -> '{stage}'"
    )
    update = finance_stage_update(finance_deal, stage, notes=f"Auto-synced from sales system: {stage}")
    await db.deals.update_one({"id": finance_deal["id"]}, update)
    finance_deal.update(update["$set"])
    return finance_deal


# ════════════════════════════════════════════════════════════════════════════
# BATCH
# ════════════════════════════════════════════════════════════════════════════

async def sync_all_deals(db) -> int:
    """Both directions, finance first. Returns the number of deals synchronized."""
    finance_deals = await db.deals.find({}, {"_id": 0, "id": 1}).to_list(None)
    sales_deals = await db.salesdeals.find({}, {"_id": 0, "id": 1}).to_list(None)
    logger.info(
        f"[STATUS SYNC] Full sync: {len(finance_deals)} finance deals, "
        f"{len(sales_deals)} sales deals"
    )

    sync_count = 0

    for deal in finance_deals:
        try:
            if await sync_finance_to_sales(db, deal["id"]):
                sync_count += 1
        except Exception as e:
            logger.error(f"[STATUS SYNC] Error syncing finance deal {deal.get('id')}: {e}")

    for deal in sales_deals:
        try:
            if await sync_sales_to_finance(db, deal["id"]):
                sync_count += 1
        except Exception as e:
            logger.error(f"[STATUS SYNC] Error syncing sales deal {deal.get('id')}: {e}")

    logger.info(f"[STATUS SYNC] Full sync completed. {sync_count} deals synchronized")
    return sync_count


async def get_sync_status(db, vin: str) -> Dict[str, Any]:
    vin = clean_vin(vin)
    finance_deal = await db.deals.find_one({"vin": vin}, {"_id": 0})
    sales_deal = await db.salesdeals.find_one({"vin": vin}, {"_id": 0})

    if not finance_deal and not sales_deal:
        raise SyncError(f"No deals found for VIN: {vin}")

    def summary(deal):
        if not deal:
            return None
        return {
            "id": deal.get("id"),
            "stage": deal.get("current_stage"),
            "priority": deal.get("priority"),
            "last_updated": deal.get("updated_at"),
        }

    status = {
        "vin": vin,
        "finance_deal": summary(finance_deal),
        "sales_deal": summary(sales_deal),
        "in_sync": False,
        "sync_issues": [],
    }

    if finance_deal and sales_deal:
        status["in_sync"] = finance_deal.get("current_stage") == sales_deal.get("current_stage")
        if not status["in_sync"]:
            status["sync_issues"].append(
                f"Stage mismatch: Finance ({finance_deal.get('current_stage')}) "
                f"vs Sales ({sales_deal.get('current_stage')})"
            )
        if finance_deal.get("priority") != sales_deal.get("priority"):
            status["sync_issues"].append(
                f"Priority mismatch: Finance ({finance_deal.get('priority')}) "
                f"vs Sales ({sales_deal.get('priority')})"
            )
    else:
        status["sync_issues"].append("Deal exists in only one system")

    return status


async def sync_deal_by_vin(db, vin: str, direction: str = "both") -> Dict[str, Any]:
    if direction not in SYNC_DIRECTIONS:
        raise InvalidSyncDirection(f"Invalid direction '{direction}'. Valid: {', '.join(SYNC_DIRECTIONS)}")

    vin = clean_vin(vin)
    finance_deal = await db.deals.find_one({"vin": vin}, {"_id": 0, "id": 1})
    sales_deal = await db.salesdeals.find_one({"vin": vin}, {"_id": 0, "id": 1})

    if not finance_deal and not sales_deal:
        raise SyncError(f"No deals found for VIN: {vin}")

    results = {"vin": vin, "finance_to_sales": None, "sales_to_finance": None, "success": False}

    if finance_deal and sales_deal:
        if direction in ("both", "finance-to-sales"):
            results["finance_to_sales"] = await sync_finance_to_sales(db, finance_deal["id"])
        if direction in ("both", "sales-to-finance"):
            results["sales_to_finance"] = await sync_sales_to_finance(db, sales_deal["id"])

    results["success"] = bool(results["finance_to_sales"] or results["sales_to_finance"])
    return results
