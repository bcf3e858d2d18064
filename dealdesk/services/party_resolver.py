"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DealDesk - Document Party Resolver                                          ║
║                                                                              ║
║  Decides WHO is printed as seller / buyer on a generated document.           ║
║                                                                              ║
║  Party = KnownParty | UnknownParty                                           ║
║                                                                              ║
║  RULES:                                                                      ║
║  - placeholder names ("", "N/A", "undefined", ...) count as missing          ║
║  - a missing party is UnknownParty, NEVER the organization identity          ║
║  - the organization is only printed where the deal type says so              ║
║    (wholesale-d2d sale -> seller, wholesale-d2d buy -> buyer)                ║
║  - contact fields: party -> party.contact -> dealer record                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union, List

from dealdesk.config import OrganizationIdentity

logger = logging.getLogger("party_resolver")

PLACEHOLDER_NAMES = {"", "n/a", "na", "undefined", "null", "none"}

SELLER = "seller"
BUYER = "buyer"


@dataclass(frozen=True)
class KnownParty:
    role: str
    name: str
    type: str = "dealer"
    email: str = ""
    phone: str = ""
    address: str = ""
    license_number: str = ""
    tier: str = ""
    dealer_id: Optional[str] = None


@dataclass(frozen=True)
class UnknownParty:
    role: str
    reason: str
    type: Optional[str] = None


Party = Union[KnownParty, UnknownParty]


class PartyResolutionError(Exception):
    """Raised when a document needs a party the deal does not identify"""

    def __init__(self, missing: List[UnknownParty]):
        self.missing = missing
        detail = ", ".join(f"{p.role} ({p.reason})" for p in missing)
        super().__init__(f"Cannot identify document parties: {detail}")


@dataclass(frozen=True)
class DocumentParties:
    seller: Party
    buyer: Party

    @property
    def missing(self) -> List[UnknownParty]:
        return [p for p in (self.seller, self.buyer) if isinstance(p, UnknownParty)]

    def require_known(self) -> "DocumentParties":
        if self.missing:
            raise PartyResolutionError(self.missing)
        return self


# ==================== HELPERS ====================

def is_placeholder(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in PLACEHOLDER_NAMES)


def _first(*values) -> str:
    for value in values:
        if not is_placeholder(value):
            return str(value).strip()
    return ""


def format_address(address) -> str:
    if not address:
        return ""
    if isinstance(address, str):
        return "" if is_placeholder(address) else address.strip()
    parts = [address.get(k) for k in ("street", "city", "state", "zip")]
    return ", ".join(p.strip() for p in parts if p and p.strip())


# ==================== RESOLUTION ====================

def resolve_party(raw: Optional[dict], role: str, dealer: Optional[dict] = None) -> Party:
    """
    Resolves one raw seller/buyer block (possibly None or partial) into a Party.
    `dealer` is the matching dealers record, used to fill what the deal lacks.
    """
    if not raw and not dealer:
        return UnknownParty(role=role, reason="no party data")

    raw = raw or {}
    dealer = dealer or {}
    contact = raw.get("contact") or {}
    dealer_contact = dealer.get("contact") or {}
    party_type = _first(raw.get("type"), "dealer" if dealer else None) or None

    name = _first(raw.get("name"), dealer.get("name"))
    if not name:
        return UnknownParty(role=role, reason="missing name", type=party_type)

    return KnownParty(
        role=role,
        name=name,
        type=party_type or "dealer",
        email=_first(raw.get("email"), contact.get("email"), dealer_contact.get("email")),
        phone=_first(raw.get("phone"), contact.get("phone"), dealer_contact.get("phone")),
        address=(
            format_address(raw.get("address"))
            or format_address(contact.get("address"))
            or format_address(dealer_contact.get("address"))
        ),
        license_number=_first(
            raw.get("license_number"), contact.get("license_number"), dealer.get("license_number")
        ),
        tier=_first(raw.get("tier"), dealer.get("tier")),
        dealer_id=raw.get("dealer_id") or dealer.get("id"),
    )


def organization_party(organization: OrganizationIdentity, role: str) -> KnownParty:
    return KnownParty(
        role=role,
        name=organization.name,
        type=organization.type,
        email=organization.email,
        phone=organization.phone,
        address=organization.address,
        license_number=organization.license_number,
        tier=organization.tier,
    )


async def lookup_dealer(db, raw: Optional[dict]) -> Optional[dict]:
    """Dealer record for a party block: by dealer_id, else by exact name (case-insensitive)."""
    if not raw:
        return None
    if raw.get("dealer_id"):
        dealer = await db.dealers.find_one({"id": raw["dealer_id"]}, {"_id": 0})
        if dealer:
            return dealer
    name = raw.get("name")
    if is_placeholder(name) or (raw.get("type") and raw.get("type") != "dealer"):
        return None
    return await db.dealers.find_one(
        {"name": {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}},
        {"_id": 0}
    )


async def resolve_document_parties(db, deal: dict, organization: OrganizationIdentity) -> DocumentParties:
    deal_type = (deal.get("deal_type") or "").lower()
    subtype = (deal.get("deal_subtype") or "").lower()
    seller_raw = deal.get("seller")
    buyer_raw = deal.get("buyer")

    if deal_type == "wholesale-d2d" and subtype == "sale":
        seller = organization_party(organization, SELLER)
        buyer = resolve_party(buyer_raw, BUYER, await lookup_dealer(db, buyer_raw))
    elif deal_type == "wholesale-d2d" and subtype == "buy":
        seller = resolve_party(seller_raw, SELLER, await lookup_dealer(db, seller_raw))
        buyer = organization_party(organization, BUYER)
    else:
        seller = resolve_party(seller_raw, SELLER, await lookup_dealer(db, seller_raw))
        buyer = resolve_party(buyer_raw, BUYER, await lookup_dealer(db, buyer_raw))

    parties = DocumentParties(seller=seller, buyer=buyer)
    for party in parties.missing:
        logger.warning(
            f"[PARTY] Deal {deal.get('id')} ({deal_type}/{subtype}): "
            f"{party.role} unresolved ({party.reason})"
        )
    return parties
