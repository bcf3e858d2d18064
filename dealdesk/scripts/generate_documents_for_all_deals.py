"""
DealDesk - Generate the documents of every finance deal.
Deals are processed one at a time with a fixed pause between them
(DOCUMENT_BATCH_DELAY_SECONDS).
Run: python -m dealdesk.scripts.generate_documents_for_all_deals
"""

import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient

from dealdesk.config import get_settings
from dealdesk.services.document_generator import generate_deal_documents

logger = logging.getLogger("generate_documents")


async def generate_all(db, settings, delay: float = None) -> dict:
    delay = settings.document_batch_delay_seconds if delay is None else delay
    deals = await db.deals.find({}, {"_id": 0}).sort("created_at", 1).to_list(None)

    report = {"total": len(deals), "generated": 0, "refused": 0, "errors": 0, "details": []}

    for index, deal in enumerate(deals):
        try:
            result = await generate_deal_documents(db, deal, settings)
            report["generated"] += len(result["documents"])
            report["refused"] += len(result["errors"])
            for err in result["errors"]:
                report["details"].append({"deal_id": deal.get("id"), "vin": deal.get("vin"), "error": err["error"]})
        except Exception as e:
            report["errors"] += 1
            report["details"].append({"deal_id": deal.get("id"), "vin": deal.get("vin"), "error": str(e)})
            logger.error(f"[DOC GEN] Deal {deal.get('id')} failed: {e}")

        if delay and index < len(deals) - 1:
            await asyncio.sleep(delay)

    return report


async def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongo_url)
    db = client[settings.db_name]

    try:
        report = await generate_all(db, settings)
    finally:
        client.close()

    print("\n════════════════════════════════════")
    print("  DOCUMENT GENERATION REPORT")
    print("════════════════════════════════════")
    print(f"  Deals:                {report['total']}")
    print(f"  Documents generated:  {report['generated']}")
    print(f"  Refused (parties):    {report['refused']}")
    print(f"  Errors:               {report['errors']}")
    print("════════════════════════════════════")

    for d in report["details"][:20]:
        print(f"  deal={d['deal_id']} vin={d['vin']} {d['error']}")

    return report


if __name__ == "__main__":
    asyncio.run(main())
