"""
DealDesk - Status Sync Tests
Finance <-> sales stage propagation by VIN, history bookkeeping, scheduler guard.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dealdesk.config import Settings
from dealdesk.services.sales_materializer import build_sales_deal
from dealdesk.services.status_sync import (
    InvalidSyncDirection,
    SyncError,
    apply_stage_transition,
    finance_stage_update,
    get_sync_status,
    sync_all_deals,
    sync_deal_by_vin,
    sync_finance_to_sales,
    sync_sales_to_finance,
)
from dealdesk.services.sync_scheduler import SyncScheduler

SALES_PERSON = {"id": None, "name": "Sales Team", "email": "titling@rpexotics.com", "phone": None}


async def seed_pair(db, make_deal, finance_stage="contract-received", sales_stage=None):
    deal = make_deal(current_stage=finance_stage)
    await db.deals.insert_one(deal)
    sales = build_sales_deal(deal, SALES_PERSON)
    if sales_stage:
        sales.update(apply_stage_transition(sales, sales_stage))
    await db.salesdeals.insert_one(sales)
    return deal, sales


# ═══════════════════════════════════════════════════════════════
# 1. HISTORY
# ═══════════════════════════════════════════════════════════════

class TestApplyStageTransition:

    def test_closes_open_entry_and_appends(self, make_deal):
        t0 = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
        sales = build_sales_deal(make_deal(), SALES_PERSON, now=t0)

        update = apply_stage_transition(sales, "docs_signed", notes="signed", now=t0 + timedelta(hours=5, minutes=10))

        history = update["stage_history"]
        assert len(history) == 2
        assert history[0]["exited_at"] is not None
        assert history[0]["duration_hours"] == 6
        assert history[1] == {
            "stage": "docs-signed",
            "entered_at": (t0 + timedelta(hours=5, minutes=10)).isoformat(),
            "exited_at": None,
            "duration_hours": 0,
            "notes": "signed",
        }
        assert update["previous_stage"] == "contract-received"
        assert update["current_stage"] == "docs-signed"

    def test_does_not_mutate_input_history(self, make_deal):
        sales = build_sales_deal(make_deal(), SALES_PERSON)
        apply_stage_transition(sales, "docs-signed")
        assert len(sales["stage_history"]) == 1
        assert sales["stage_history"][0]["exited_at"] is None

    def test_finance_update_pushes_history(self, make_deal):
        update = finance_stage_update(make_deal(), "title_processing", changed_by="back-office")
        assert update["$set"]["current_stage"] == "title-processing"
        entry = update["$push"]["workflow_history"]
        assert entry["previous_stage"] == "contract-received"
        assert entry["changed_by"] == "back-office"


# ═══════════════════════════════════════════════════════════════
# 2. ONE DEAL
# ═══════════════════════════════════════════════════════════════

class TestSyncOneDeal:

    @pytest.mark.asyncio
    async def test_finance_to_sales(self, db, make_deal):
        deal, sales = await seed_pair(db, make_deal)
        await db.deals.update_one({"id": deal["id"]}, {"$set": {"current_stage": "payment-approved"}})

        result = await sync_finance_to_sales(db, deal["id"])

        assert result["current_stage"] == "payment-approved"
        stored = await db.salesdeals.find_one({"id": sales["id"]}, {"_id": 0})
        assert stored["current_stage"] == "payment-approved"
        assert stored["previous_stage"] == "contract-received"
        assert stored["stage_history"][-1]["notes"].startswith("Auto-synced from finance")

    @pytest.mark.asyncio
    async def test_sales_to_finance(self, db, make_deal):
        deal, sales = await seed_pair(db, make_deal, sales_stage="title-received")

        await sync_sales_to_finance(db, sales["id"])

        stored = await db.deals.find_one({"id": deal["id"]}, {"_id": 0})
        assert stored["current_stage"] == "title-received"
        assert stored["workflow_history"][-1]["changed_by"] == "system"

    @pytest.mark.asyncio
    async def test_already_in_sync_writes_nothing(self, db, make_deal):
        deal, sales = await seed_pair(db, make_deal)
        await sync_finance_to_sales(db, deal["id"])
        stored = await db.salesdeals.find_one({"id": sales["id"]}, {"_id": 0})
        assert len(stored["stage_history"]) == 1

    @pytest.mark.asyncio
    async def test_missing_counterpart(self, db, make_deal):
        deal = make_deal()
        await db.deals.insert_one(deal)
        assert await sync_finance_to_sales(db, deal["id"]) is None
        assert await sync_finance_to_sales(db, "unknown") is None

    @pytest.mark.asyncio
    async def test_unknown_stage_is_not_propagated(self, db, make_deal):
        deal, sales = await seed_pair(db, make_deal)
        await db.deals.update_one({"id": deal["id"]}, {"$set": {"current_stage": "lost-in-mail"}})
        await sync_finance_to_sales(db, deal["id"])
        stored = await db.salesdeals.find_one({"id": sales["id"]}, {"_id": 0})
        assert stored["current_stage"] == "contract-received"


# ═══════════════════════════════════════════════════════════════
# 3. BATCH / VIN
# ═══════════════════════════════════════════════════════════════

class TestSyncBatch:

    @pytest.mark.asyncio
    async def test_sync_all_counts(self, db, make_deal):
        await seed_pair(db, make_deal)
        count = await sync_all_deals(db)
        # one finance->sales + one sales->finance
        assert count == 2

    @pytest.mark.asyncio
    async def test_status_reports_mismatch(self, db, make_deal):
        deal, _ = await seed_pair(db, make_deal, sales_stage="docs-signed")
        await db.deals.update_one({"id": deal["id"]}, {"$set": {"priority": "urgent"}})

        status = await get_sync_status(db, deal["vin"].lower())

        assert status["in_sync"] is False
        assert len(status["sync_issues"]) == 2
        assert status["finance_deal"]["stage"] == "contract-received"
        assert status["sales_deal"]["stage"] == "docs-signed"

    @pytest.mark.asyncio
    async def test_status_unknown_vin(self, db):
        with pytest.raises(SyncError):
            await get_sync_status(db, "NOPE")

    @pytest.mark.asyncio
    async def test_sync_by_vin_direction(self, db, make_deal):
        deal, sales = await seed_pair(db, make_deal, sales_stage="docs-signed")

        result = await sync_deal_by_vin(db, deal["vin"], "sales-to-finance")

        assert result["success"] is True
        assert result["finance_to_sales"] is None
        stored = await db.deals.find_one({"id": deal["id"]}, {"_id": 0})
        assert stored["current_stage"] == "docs-signed"

    @pytest.mark.asyncio
    async def test_sync_by_vin_bad_direction(self, db):
        with pytest.raises(InvalidSyncDirection):
            await sync_deal_by_vin(db, "X", "sideways")


class TestSyncScheduler:

    def test_disabled_when_interval_zero(self):
        scheduler = SyncScheduler(db=object(), settings=Settings(sync_interval_minutes=0))
        scheduler.start()
        assert scheduler.enabled is False
        assert scheduler.scheduler.running is False

    @pytest.mark.asyncio
    async def test_run_skipped_while_running(self, db):
        scheduler = SyncScheduler(db=db, settings=Settings(sync_interval_minutes=5))
        scheduler.is_running = True
        assert await scheduler.run_sync() is None

    @pytest.mark.asyncio
    async def test_run_sync(self, db, make_deal):
        await seed_pair(db, make_deal)
        scheduler = SyncScheduler(db=db, settings=Settings(sync_interval_minutes=5))
        assert await scheduler.run_sync() == 2
        assert scheduler.is_running is False
        assert scheduler.status()["last_result"] == 2
