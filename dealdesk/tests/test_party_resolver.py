"""
DealDesk - Document Party Resolver Tests (seller / buyer printed on documents)

Scenarios:
1. Complete / partial / missing / placeholder party
2. Fields filled from the contact block, then from the dealer record
3. wholesale-d2d: the organization only appears on its own side
4. The organization never silently stands in for a missing party
"""

import pytest

from dealdesk.config import OrganizationIdentity
from dealdesk.services.party_resolver import (
    BUYER,
    SELLER,
    KnownParty,
    PartyResolutionError,
    UnknownParty,
    format_address,
    is_placeholder,
    lookup_dealer,
    resolve_document_parties,
    resolve_party,
)

ORG = OrganizationIdentity()


class TestResolveParty:

    def test_complete_party(self):
        party = resolve_party({
            "name": "Gateway Motors",
            "type": "dealer",
            "license_number": "D1234",
            "contact": {"email": "a@gw.com", "phone": "555", "address": {"street": "1 Main", "city": "STL"}},
        }, SELLER)
        assert isinstance(party, KnownParty)
        assert party.name == "Gateway Motors"
        assert party.email == "a@gw.com"
        assert party.address == "1 Main, STL"
        assert party.license_number == "D1234"

    def test_none_is_unknown(self):
        party = resolve_party(None, BUYER)
        assert isinstance(party, UnknownParty)
        assert party.role == BUYER

    @pytest.mark.parametrize("name", ["", "N/A", "undefined", "  ", None])
    def test_placeholder_name_is_unknown(self, name):
        party = resolve_party({"name": name, "type": "dealer", "contact": {"email": "x@y.com"}}, BUYER)
        assert isinstance(party, UnknownParty)
        assert party.reason == "missing name"
        assert party.type == "dealer"

    def test_dealer_record_fills_gaps(self):
        dealer = {
            "id": "dl-1",
            "name": "Gateway Motors",
            "license_number": "D9999",
            "tier": "Tier 2",
            "contact": {"phone": "(314) 555-0101", "address": "9 Olive St"},
        }
        party = resolve_party({"name": "Gateway Motors", "contact": {"email": "a@gw.com"}}, SELLER, dealer)
        assert party.phone == "(314) 555-0101"
        assert party.email == "a@gw.com"
        assert party.address == "9 Olive St"
        assert party.license_number == "D9999"
        assert party.tier == "Tier 2"
        assert party.dealer_id == "dl-1"

    def test_party_values_win_over_dealer_record(self):
        dealer = {"id": "dl-1", "name": "Gateway", "contact": {"phone": "111"}}
        party = resolve_party({"name": "Gateway", "phone": "222"}, SELLER, dealer)
        assert party.phone == "222"

    def test_helpers(self):
        assert is_placeholder("n/a")
        assert not is_placeholder("Gateway")
        assert format_address({"street": "1 Main", "city": "", "state": "MO", "zip": "63132"}) == "1 Main, MO, 63132"
        assert format_address("N/A") == ""


class TestResolveDocumentParties:

    @pytest.mark.asyncio
    async def test_d2d_sale_org_is_seller(self, db, make_deal):
        deal = make_deal(
            deal_type="wholesale-d2d", deal_subtype="sale",
            buyer={"name": "Midwest Auto", "type": "dealer"},
        )
        parties = await resolve_document_parties(db, deal, ORG)
        assert parties.seller.name == "RP Exotics"
        assert parties.seller.license_number == "D4865"
        assert parties.buyer.name == "Midwest Auto"
        assert parties.missing == []

    @pytest.mark.asyncio
    async def test_d2d_buy_org_is_buyer(self, db, make_deal):
        deal = make_deal(deal_type="wholesale-d2d", deal_subtype="buy")
        parties = await resolve_document_parties(db, deal, ORG)
        assert parties.seller.name == "Gateway Motors"
        assert parties.buyer.name == "RP Exotics"

    @pytest.mark.asyncio
    async def test_missing_buyer_is_never_the_org(self, db, make_deal):
        """A dealer buyer named N/A stays unknown; the org is not substituted."""
        deal = make_deal(
            deal_type="wholesale", deal_subtype="sale",
            buyer={"name": "N/A", "type": "dealer"},
        )
        parties = await resolve_document_parties(db, deal, ORG)
        assert isinstance(parties.buyer, UnknownParty)
        assert [p.role for p in parties.missing] == [BUYER]
        with pytest.raises(PartyResolutionError) as exc:
            parties.require_known()
        assert exc.value.missing[0].role == BUYER

    @pytest.mark.asyncio
    async def test_d2d_sale_without_buyer(self, db, make_deal):
        deal = make_deal(deal_type="wholesale-d2d", deal_subtype="sale", buyer=None)
        parties = await resolve_document_parties(db, deal, ORG)
        assert isinstance(parties.seller, KnownParty)
        assert isinstance(parties.buyer, UnknownParty)

    @pytest.mark.asyncio
    async def test_enrichment_by_dealer_name(self, db, make_deal):
        await db.dealers.insert_one({
            "id": "dl-7", "name": "Gateway Motors", "license_number": "D7777",
            "contact": {"address": {"street": "5 Market St", "city": "St. Louis", "state": "MO", "zip": "63101"}},
        })
        parties = await resolve_document_parties(db, make_deal(seller={"name": "gateway motors", "type": "dealer"}), ORG)
        assert parties.seller.dealer_id == "dl-7"
        assert parties.seller.license_number == "D7777"
        assert parties.seller.address == "5 Market St, St. Louis, MO, 63101"


class TestLookupDealer:

    @pytest.mark.asyncio
    async def test_by_id_first(self, db):
        await db.dealers.insert_one({"id": "dl-1", "name": "Other Name"})
        dealer = await lookup_dealer(db, {"name": "Gateway", "dealer_id": "dl-1"})
        assert dealer["id"] == "dl-1"

    @pytest.mark.asyncio
    async def test_private_party_not_looked_up(self, db):
        await db.dealers.insert_one({"id": "dl-1", "name": "Jane Doe"})
        assert await lookup_dealer(db, {"name": "Jane Doe", "type": "private"}) is None

    @pytest.mark.asyncio
    async def test_name_is_escaped(self, db):
        await db.dealers.insert_one({"id": "dl-1", "name": "A+ Autos"})
        assert (await lookup_dealer(db, {"name": "A+ Autos"}))["id"] == "dl-1"
        assert await lookup_dealer(db, {"name": "A.*"}) is None
