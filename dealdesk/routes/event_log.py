"""
DealDesk - Routes Event Log (audit trail)
"""

from typing import Optional

from fastapi import APIRouter, Depends

from dealdesk.config import get_db
from dealdesk.routes.auth import require_api_key
from dealdesk.services.event_logger import event_query, get_events

router = APIRouter(prefix="/event-log", tags=["EventLog"])


@router.get("")
async def list_events(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    db=Depends(get_db),
    caller: dict = Depends(require_api_key)
):
    """Events with filters, most recent first. entity_id also matches related.deal_id."""
    events = await get_events(db, entity_type=entity_type, entity_id=entity_id, action=action,
                              limit=limit, skip=skip)
    total = await db.event_log.count_documents(event_query(action, entity_type, entity_id))
    return {"events": events, "count": len(events), "total": total}
