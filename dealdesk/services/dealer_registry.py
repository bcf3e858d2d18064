"""
DealDesk - Dealer Registry

Keeps the dealers collection in step with the parties typed into deals.
A dealer seller/buyer is matched against existing dealers (name, email or
phone) and enriched, or created on first sight.
"""

import json
import logging
import re
from typing import Optional, Dict, Any

from pymongo.errors import PyMongoError

from dealdesk.config import new_id, now_iso, now_utc
from dealdesk.services.party_resolver import is_placeholder

logger = logging.getLogger("dealer_registry")

ADDRESS_KEYS = ("street", "city", "state", "zip")
PRIVATE_PARTY_NAMES = {"private seller", "private buyer"}
DEFAULT_TIER = "Tier 1"


class DealerError(Exception):
    """Raised when the dealers collection cannot be read or written"""
    pass


# ==================== ADDRESS ====================

def normalize_address(value) -> Dict[str, str]:
    """
    dict / JSON string / plain street line -> {street, city, state, zip}.
    Empty input gives {}.
    """
    if not value:
        return {}
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            return {"street": value.strip(), "city": "", "state": "", "zip": ""}
        value = parsed
    if isinstance(value, dict):
        return {k: str(value.get(k) or "").strip() for k in ADDRESS_KEYS}
    return {}


def _merge_address(current, incoming: Dict[str, str]) -> Optional[Dict[str, str]]:
    """Merged address, or None when incoming adds nothing."""
    merged = normalize_address(current) or {k: "" for k in ADDRESS_KEYS}
    changed = False
    for key in ADDRESS_KEYS:
        if incoming.get(key) and incoming[key] != merged.get(key):
            merged[key] = incoming[key]
            changed = True
    return merged if changed else None


# ==================== FIND OR CREATE ====================

def is_registrable(party: Optional[dict]) -> bool:
    """Only named dealer parties go to the registry."""
    if not party:
        return False
    name = party.get("name")
    if is_placeholder(name) or name.strip().lower() in PRIVATE_PARTY_NAMES:
        return False
    return (party.get("type") or "dealer") == "dealer"


def _match_query(name: str, email: str, phone: str) -> dict:
    conditions = [{"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}]
    if email:
        conditions.append({"contact.email": email})
    if phone:
        conditions.append({"contact.phone": phone})
    return {"$or": conditions}


def _party_summary(party: dict, dealer: dict) -> dict:
    contact = dealer.get("contact") or {}
    party_contact = dict(party.get("contact") or {})
    party_contact.update({
        "phone": contact.get("phone") or party_contact.get("phone") or "",
        "email": contact.get("email") or party_contact.get("email") or "",
        "address": contact.get("address") or party_contact.get("address") or {},
    })
    return {
        **party,
        "name": dealer.get("name"),
        "type": dealer.get("type") or "dealer",
        "dealer_id": dealer.get("id"),
        "company": dealer.get("company") or party.get("company") or "",
        "license_number": dealer.get("license_number") or party.get("license_number") or "",
        "tier": dealer.get("tier") or DEFAULT_TIER,
        "contact": party_contact,
    }


async def find_or_create_dealer(db, party: Optional[dict]) -> Optional[dict]:
    """
    Returns the party block linked to its dealers record (dealer_id set).
    Private or unnamed parties are returned unchanged.

    Raises DealerError on database failure.
    """
    if not is_registrable(party):
        return party

    name = party["name"].strip()
    contact = party.get("contact") or {}
    email = (contact.get("email") or party.get("email") or "").strip().lower()
    phone = (contact.get("phone") or party.get("phone") or "").strip()
    address = normalize_address(contact.get("address") or party.get("address"))
    license_number = party.get("license_number") or contact.get("license_number")
    tier = party.get("tier")

    try:
        existing = await db.dealers.find_one(_match_query(name, email, phone), {"_id": 0})

        if existing:
            update = {}
            existing_contact = existing.get("contact") or {}
            if phone and not existing_contact.get("phone"):
                update["contact.phone"] = phone
            if email and not existing_contact.get("email"):
                update["contact.email"] = email
            if address:
                merged = _merge_address(existing_contact.get("address"), address)
                if merged:
                    update["contact.address"] = merged
            if license_number and license_number != existing.get("license_number"):
                logger.info(
                    f"[DEALER] License number for {existing['name']}: "
                    f"{existing.get('license_number')} -> {license_number}"
                )
                update["license_number"] = license_number
            if tier and tier != existing.get("tier"):
                update["tier"] = tier

            if update:
                update["updated_at"] = now_iso()
                await db.dealers.update_one({"id": existing["id"]}, {"$set": update})
                logger.info(f"[DEALER] Updated {existing['name']}: {sorted(update)}")
                existing = await db.dealers.find_one({"id": existing["id"]}, {"_id": 0})
            return _party_summary(party, existing)

        dealer = {
            "id": new_id(),
            "name": name,
            "company": party.get("company") or "",
            "type": "dealer",
            "contact": {
                "person": contact.get("person") or "",
                "phone": phone,
                "email": email,
                "address": address,
            },
            "license_number": license_number or "",
            "tier": tier or DEFAULT_TIER,
            "status": "Active",
            "specialties": [],
            "performance": {"total_deals": 0, "total_volume": 0.0},
            "notes": f"Auto-created from deal on {now_utc().date().isoformat()}",
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        await db.dealers.insert_one(dealer)
        dealer.pop("_id", None)
        logger.info(f"[DEALER] Created dealer {name} ({dealer['id']})")
        return _party_summary(party, dealer)

    except PyMongoError as e:
        raise DealerError(f"Dealer registry unavailable for {name}: {e}") from e


async def record_dealer_deal(db, dealer_id: str, amount: Optional[float]) -> bool:
    """Adds one deal and its amount to the dealer's performance counters."""
    if not dealer_id:
        return False
    result = await db.dealers.update_one(
        {"id": dealer_id},
        {
            "$inc": {"performance.total_deals": 1, "performance.total_volume": float(amount or 0)},
            "$set": {"performance.last_deal_date": now_iso()},
        }
    )
    return result.matched_count > 0


async def get_dealer_performance(db, dealer_id: str) -> Dict[str, Any]:
    dealer = await db.dealers.find_one({"id": dealer_id}, {"_id": 0, "performance": 1})
    performance = (dealer or {}).get("performance") or {}
    total_deals = performance.get("total_deals", 0)
    total_volume = performance.get("total_volume", 0.0)
    return {
        "total_deals": total_deals,
        "total_volume": total_volume,
        "average_deal": round(total_volume / total_deals, 2) if total_deals else 0.0,
        "last_deal_date": performance.get("last_deal_date"),
    }
