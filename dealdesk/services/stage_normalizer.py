"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DealDesk - Stage / Priority Normalizer                                      ║
║                                                                              ║
║  Historical deals carry every spelling the workflow ever used                ║
║  (contract_received, purchased, ready-to-list, normal, ...).                 ║
║  This module is the ONLY translation to the canonical vocabulary.            ║
║                                                                              ║
║  RULES:                                                                      ║
║  - missing value  -> schema default (contract-received / medium)             ║
║  - known variant  -> canonical enum member                                   ║
║  - unknown value  -> UnknownStageError / UnknownPriorityError                ║
║  - normalize(normalize(x)) == normalize(x)                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Dict, Optional, Union

from dealdesk.models.deal import DealStage, Priority


class UnknownStageError(ValueError):
    """Raised when a stage string has no canonical mapping"""

    def __init__(self, raw):
        self.raw = raw
        super().__init__(f"Unknown deal stage: {raw!r}")


class UnknownPriorityError(ValueError):
    """Raised when a priority string has no canonical mapping"""

    def __init__(self, raw):
        self.raw = raw
        super().__init__(f"Unknown deal priority: {raw!r}")


# ════════════════════════════════════════════════════════════════════════════
# LOOKUP TABLES
# ════════════════════════════════════════════════════════════════════════════

STAGE_ALIASES: Dict[str, DealStage] = {
    # contract received
    "contract-received": DealStage.CONTRACT_RECEIVED,
    "contract_received": DealStage.CONTRACT_RECEIVED,
    "purchased": DealStage.CONTRACT_RECEIVED,
    # docs signed
    "docs-signed": DealStage.DOCS_SIGNED,
    "docs_signed": DealStage.DOCS_SIGNED,
    # title processing
    "title-processing": DealStage.TITLE_PROCESSING,
    "title_processing": DealStage.TITLE_PROCESSING,
    "documentation": DealStage.TITLE_PROCESSING,
    # payment approved
    "payment-approved": DealStage.PAYMENT_APPROVED,
    "payment_approved": DealStage.PAYMENT_APPROVED,
    "verification": DealStage.PAYMENT_APPROVED,
    # funds disbursed
    "funds-disbursed": DealStage.FUNDS_DISBURSED,
    "funds_disbursed": DealStage.FUNDS_DISBURSED,
    "processing": DealStage.FUNDS_DISBURSED,
    # title received
    "title-received": DealStage.TITLE_RECEIVED,
    "title_received": DealStage.TITLE_RECEIVED,
    "ready-to-list": DealStage.TITLE_RECEIVED,
    "ready_to_list": DealStage.TITLE_RECEIVED,
    # deal complete
    "deal-complete": DealStage.DEAL_COMPLETE,
    "deal_complete": DealStage.DEAL_COMPLETE,
    "completion": DealStage.DEAL_COMPLETE,
}

PRIORITY_ALIASES: Dict[str, Priority] = {
    "urgent": Priority.URGENT,
    "high": Priority.HIGH,
    "medium": Priority.MEDIUM,
    "normal": Priority.MEDIUM,
    "low": Priority.LOW,
}

STAGE_ORDER = list(DealStage)

DEFAULT_STAGE = DealStage.CONTRACT_RECEIVED
DEFAULT_PRIORITY = Priority.MEDIUM


def _key(raw) -> str:
    if isinstance(raw, (DealStage, Priority)):
        return raw.value
    return str(raw).strip().lower()


def _is_missing(raw) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


# ════════════════════════════════════════════════════════════════════════════
# NORMALIZATION
# ════════════════════════════════════════════════════════════════════════════

def normalize_stage(raw: Optional[Union[str, DealStage]]) -> DealStage:
    if _is_missing(raw):
        return DEFAULT_STAGE
    stage = STAGE_ALIASES.get(_key(raw))
    if stage is None:
        raise UnknownStageError(raw)
    return stage


def normalize_priority(raw: Optional[Union[str, Priority]]) -> Priority:
    if _is_missing(raw):
        return DEFAULT_PRIORITY
    priority = PRIORITY_ALIASES.get(_key(raw))
    if priority is None:
        raise UnknownPriorityError(raw)
    return priority


def normalize_workflow_fields(fields: dict) -> dict:
    """
    Normalizes a {stage, priority} pair.

    >>> normalize_workflow_fields({"stage": "funds_disbursed", "priority": "normal"})
    {'stage': 'funds-disbursed', 'priority': 'medium'}
    """
    return {
        "stage": normalize_stage(fields.get("stage")).value,
        "priority": normalize_priority(fields.get("priority")).value,
    }


def is_canonical_stage(raw) -> bool:
    return isinstance(raw, str) and raw in {s.value for s in DealStage}


def stage_progress(stage: Union[str, DealStage]) -> int:
    """Percent of the workflow reached at this stage (contract-received > 0)."""
    index = STAGE_ORDER.index(normalize_stage(stage))
    return round((index + 1) / len(STAGE_ORDER) * 100)


def normalize_deal_document(doc: dict) -> dict:
    """
    Returns the $set payload needed to bring a stored deal to canonical
    stage/priority, or {} when it is already canonical.

    Raises UnknownStageError / UnknownPriorityError for unmapped values.
    """
    update = {}
    stage = normalize_stage(doc.get("current_stage")).value
    priority = normalize_priority(doc.get("priority")).value
    if not is_canonical_stage(doc.get("current_stage")):
        update["current_stage"] = stage
    if doc.get("priority") != priority:
        update["priority"] = priority
    return update


# ════════════════════════════════════════════════════════════════════════════
# STORED DEALS
# ════════════════════════════════════════════════════════════════════════════

NORMALIZED_COLLECTIONS = ("deals", "salesdeals")


async def normalize_stored_deals(db, collections=NORMALIZED_COLLECTIONS) -> Dict[str, dict]:
    """
    Rewrites stage/priority of every stored deal to canonical form.
    Deals with unmapped values are reported and left untouched.
    """
    report = {}
    for name in collections:
        stats = {"total": 0, "updated": 0, "unchanged": 0, "unknown": 0, "unknown_details": []}
        cursor = db[name].find({}, {"_id": 0, "id": 1, "vin": 1, "current_stage": 1, "priority": 1})
        async for doc in cursor:
            stats["total"] += 1
            try:
                update = normalize_deal_document(doc)
            except (UnknownStageError, UnknownPriorityError) as e:
                stats["unknown"] += 1
                stats["unknown_details"].append({"id": doc.get("id"), "vin": doc.get("vin"), "error": str(e)})
                continue
            if update:
                await db[name].update_one({"id": doc["id"]}, {"$set": update})
                stats["updated"] += 1
            else:
                stats["unchanged"] += 1
        report[name] = stats
    return report
