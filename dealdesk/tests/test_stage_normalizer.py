"""
DealDesk - Stage / Priority Normalizer Tests
Run: pytest dealdesk/tests/test_stage_normalizer.py -v
"""

import pytest

from dealdesk.models.deal import DealStage, Priority
from dealdesk.services.stage_normalizer import (
    STAGE_ALIASES,
    PRIORITY_ALIASES,
    UnknownStageError,
    UnknownPriorityError,
    normalize_stage,
    normalize_priority,
    normalize_workflow_fields,
    normalize_deal_document,
    normalize_stored_deals,
    is_canonical_stage,
    stage_progress,
)


# ═══════════════════════════════════════════════════════════════
# 1. STAGES
# ═══════════════════════════════════════════════════════════════

class TestNormalizeStage:
    """Every historical spelling maps to one canonical stage."""

    @pytest.mark.parametrize("raw,expected", [
        ("contract_received", DealStage.CONTRACT_RECEIVED),
        ("purchased", DealStage.CONTRACT_RECEIVED),
        ("documentation", DealStage.TITLE_PROCESSING),
        ("verification", DealStage.PAYMENT_APPROVED),
        ("processing", DealStage.FUNDS_DISBURSED),
        ("ready-to-list", DealStage.TITLE_RECEIVED),
        ("completion", DealStage.DEAL_COMPLETE),
    ])
    def test_legacy_spellings(self, raw, expected):
        assert normalize_stage(raw) == expected

    def test_case_and_whitespace(self):
        """'  Funds_Disbursed ' is still funds-disbursed."""
        assert normalize_stage("  Funds_Disbursed ") == DealStage.FUNDS_DISBURSED

    def test_missing_gives_default(self):
        assert normalize_stage(None) == DealStage.CONTRACT_RECEIVED
        assert normalize_stage("") == DealStage.CONTRACT_RECEIVED
        assert normalize_stage("   ") == DealStage.CONTRACT_RECEIVED

    def test_unknown_raises(self):
        with pytest.raises(UnknownStageError) as exc:
            normalize_stage("awaiting-pickup")
        assert exc.value.raw == "awaiting-pickup"

    def test_enum_passes_through(self):
        assert normalize_stage(DealStage.DOCS_SIGNED) == DealStage.DOCS_SIGNED

    def test_idempotent_over_all_known_values(self):
        for raw in STAGE_ALIASES:
            once = normalize_stage(raw)
            assert normalize_stage(once.value) == once
            assert is_canonical_stage(once.value)

    def test_every_canonical_stage_is_its_own_alias(self):
        for stage in DealStage:
            assert normalize_stage(stage.value) == stage


# ═══════════════════════════════════════════════════════════════
# 2. PRIORITIES
# ═══════════════════════════════════════════════════════════════

class TestNormalizePriority:

    def test_normal_is_medium(self):
        assert normalize_priority("normal") == Priority.MEDIUM
        assert normalize_priority("NORMAL") == Priority.MEDIUM

    def test_missing_gives_medium(self):
        assert normalize_priority(None) == Priority.MEDIUM

    def test_unknown_raises(self):
        with pytest.raises(UnknownPriorityError):
            normalize_priority("critical")

    def test_idempotent(self):
        for raw in PRIORITY_ALIASES:
            once = normalize_priority(raw)
            assert normalize_priority(once.value) == once


# ═══════════════════════════════════════════════════════════════
# 3. DOCUMENTS
# ═══════════════════════════════════════════════════════════════

class TestWorkflowFields:

    def test_funds_disbursed_normal_example(self):
        assert normalize_workflow_fields({"stage": "funds_disbursed", "priority": "normal"}) == {
            "stage": "funds-disbursed",
            "priority": "medium",
        }

    def test_canonical_document_needs_no_update(self):
        assert normalize_deal_document({"current_stage": "docs-signed", "priority": "high"}) == {}

    def test_legacy_document_update(self):
        update = normalize_deal_document({"current_stage": "title_received", "priority": "normal"})
        assert update == {"current_stage": "title-received", "priority": "medium"}

    def test_missing_fields_are_filled(self):
        update = normalize_deal_document({})
        assert update == {"current_stage": "contract-received", "priority": "medium"}

    def test_progress_is_monotonic(self):
        values = [stage_progress(s) for s in DealStage]
        assert values == sorted(values)
        assert values[-1] == 100
        assert values[0] > 0


class TestNormalizeStoredDeals:

    @pytest.mark.asyncio
    async def test_rewrites_and_reports(self, db, make_deal):
        await db.deals.insert_one(make_deal(id="a", current_stage="funds_disbursed", priority="normal"))
        await db.deals.insert_one(make_deal(id="b", vin="B" * 17))
        await db.deals.insert_one(make_deal(id="c", vin="C" * 17, current_stage="lost-in-mail"))

        report = await normalize_stored_deals(db)

        deals = report["deals"]
        assert deals["total"] == 3
        assert deals["updated"] == 1
        assert deals["unchanged"] == 1
        assert deals["unknown"] == 1
        assert deals["unknown_details"][0]["id"] == "c"

        a = await db.deals.find_one({"id": "a"}, {"_id": 0})
        assert a["current_stage"] == "funds-disbursed"
        assert a["priority"] == "medium"
        c = await db.deals.find_one({"id": "c"}, {"_id": 0})
        assert c["current_stage"] == "lost-in-mail"

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, db, make_deal):
        await db.salesdeals.insert_one({"id": "s1", "vin": "S" * 17, "current_stage": "deal_complete"})
        await normalize_stored_deals(db)
        report = await normalize_stored_deals(db)
        assert report["salesdeals"]["updated"] == 0
        assert report["salesdeals"]["unchanged"] == 1
