"""
DealDesk - Event Log

Audit trail of back-office actions (deal writes, stage moves, document
generation, upload links). Routes call log_event after the write succeeds.
"""

from dealdesk.config import new_id, now_iso


async def log_event(
    db,
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
):
    """
    Append one entry to event_log.

    Args:
        action: create_deal, change_stage, generate_documents, ...
        entity_type: deal | sales_deal | dealer | sync | upload_token
        entity_id: id of the entity acted on (token prefix for upload tokens)
        user: caller label ("back-office", seller email, or "system")
        details: old_value / new_value / counters
        related: vin, deal_id, dealer_id ...
    """
    await db.event_log.insert_one({
        "id": new_id(),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })


def event_query(action: str = None, entity_type: str = None, entity_id: str = None) -> dict:
    query = {}
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type
    if entity_id:
        # Upload links point at their deal through related.deal_id
        query["$or"] = [{"entity_id": entity_id}, {"related.deal_id": entity_id}]
    return query


async def get_events(db, entity_type: str = None, entity_id: str = None, action: str = None,
                     limit: int = 100, skip: int = 0):
    """Most recent first."""
    query = event_query(action, entity_type, entity_id)
    return await db.event_log.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
