"""
DealDesk - Create the missing sales deal of every finance deal.
Safe to re-run: VINs that already have a sales deal are skipped.
Run: python -m dealdesk.scripts.materialize_sales_deals
"""

import asyncio

from motor.motor_asyncio import AsyncIOMotorClient

from dealdesk.config import get_settings
from dealdesk.services.sales_materializer import materialize_sales_deals


async def main():
    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongo_url)
    db = client[settings.db_name]

    try:
        await db.salesdeals.create_index("vin", unique=True)
        report = await materialize_sales_deals(db)
    finally:
        client.close()

    print("\n════════════════════════════════════")
    print("  SALES DEALS MATERIALIZATION")
    print("════════════════════════════════════")
    print(f"  Finance deals:  {report['total']}")
    print(f"  Created:        {report['created']}")
    print(f"  Skipped:        {report['skipped']}")
    print(f"  Errors:         {report['errors']}")
    print("════════════════════════════════════")

    for e in report["error_details"][:20]:
        print(f"  deal={e['deal_id']} vin={e['vin']} error={e['error']}")

    return report


if __name__ == "__main__":
    asyncio.run(main())
