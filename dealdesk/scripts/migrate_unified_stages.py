"""
DealDesk - Migration: rewrite every stored stage / priority to canonical form.
Run: python -m dealdesk.scripts.migrate_unified_stages
"""

import asyncio

from motor.motor_asyncio import AsyncIOMotorClient

from dealdesk.config import get_settings
from dealdesk.services.stage_normalizer import normalize_stored_deals


async def migrate():
    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongo_url)
    db = client[settings.db_name]

    try:
        report = await normalize_stored_deals(db)
    finally:
        client.close()

    print("\n════════════════════════════════════")
    print("  STAGE MIGRATION REPORT")
    print("════════════════════════════════════")
    for name, stats in report.items():
        print(f"  [{name}]")
        print(f"    Total:      {stats['total']}")
        print(f"    Updated:    {stats['updated']}")
        print(f"    Unchanged:  {stats['unchanged']}")
        print(f"    Unknown:    {stats['unknown']}")
    print("════════════════════════════════════")

    for name, stats in report.items():
        if stats["unknown_details"]:
            print(f"\nUnmapped values in {name} (left untouched):")
            for e in stats["unknown_details"][:20]:
                print(f"  id={e['id']} vin={e['vin']} {e['error']}")

    return report


if __name__ == "__main__":
    asyncio.run(migrate())
