"""
DealDesk - Routes Sync
Finance <-> sales synchronization and the maintenance batches behind it.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from dealdesk.config import get_db
from dealdesk.routes.auth import require_api_key
from dealdesk.services.event_logger import log_event
from dealdesk.services.sales_materializer import materialize_sales_deals
from dealdesk.services.stage_normalizer import normalize_stored_deals
from dealdesk.services.status_sync import (
    InvalidSyncDirection,
    SyncError,
    get_sync_status,
    sync_all_deals,
    sync_deal_by_vin,
)
from dealdesk.services import sync_scheduler as scheduler_module

router = APIRouter(prefix="/sync", tags=["Sync"])
logger = logging.getLogger("sync")


@router.get("/status/{vin}")
async def sync_status(vin: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    try:
        return await get_sync_status(db, vin)
    except SyncError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/scheduler")
async def scheduler_status(caller: dict = Depends(require_api_key)):
    if scheduler_module.sync_scheduler is None:
        return {"enabled": False, "running": False}
    return scheduler_module.sync_scheduler.status()


@router.post("/all")
async def sync_all(db=Depends(get_db), caller: dict = Depends(require_api_key)):
    count = await sync_all_deals(db)
    await log_event(db, "sync_all", "sync", "all", user=caller["name"], details={"synchronized": count})
    return {"success": True, "synchronized": count}


@router.post("/vin/{vin}")
async def sync_vin(vin: str, direction: str = "both", db=Depends(get_db), caller: dict = Depends(require_api_key)):
    try:
        return await sync_deal_by_vin(db, vin, direction)
    except InvalidSyncDirection as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SyncError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/materialize")
async def materialize(db=Depends(get_db), caller: dict = Depends(require_api_key)):
    """Creates the missing sales deals (one per VIN)."""
    report = await materialize_sales_deals(db)
    await log_event(
        db, "materialize_sales_deals", "sync", "materialize", user=caller["name"],
        details={k: report[k] for k in ("total", "created", "skipped", "errors")}
    )
    return report


@router.post("/normalize")
async def normalize(db=Depends(get_db), caller: dict = Depends(require_api_key)):
    """Rewrites stage/priority to canonical form in deals and salesdeals."""
    report = await normalize_stored_deals(db)
    await log_event(
        db, "normalize_stages", "sync", "normalize", user=caller["name"],
        details={name: {k: v for k, v in stats.items() if k != "unknown_details"} for name, stats in report.items()}
    )
    return report
