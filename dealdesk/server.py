"""
DealDesk - API Backend
Back office: finance deals, sales deals, dealers, documents, seller uploads.

Run with:
    uvicorn dealdesk.server:app --host 0.0.0.0 --port 8001 --reload
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dealdesk import __version__
from dealdesk.config import get_settings, get_db, close_client

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("dealdesk")

settings = get_settings()

# App
app = FastAPI(
    title="DealDesk",
    description="Dealership back office API",
    version=__version__
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== ROUTES ====================

from dealdesk.routes import auth, deals, sales_deals, dealers, sync, documents, seller_upload, event_log  # noqa: E402

app.include_router(auth.router, prefix="/api")
app.include_router(deals.router, prefix="/api")
app.include_router(sales_deals.router, prefix="/api")
app.include_router(dealers.router, prefix="/api")
app.include_router(sync.router, prefix="/api")
app.include_router(documents.router, prefix="/api")
app.include_router(seller_upload.router, prefix="/api")
app.include_router(event_log.router, prefix="/api")


# ==================== ROOT ====================

@app.get("/")
async def root():
    return {
        "name": "DealDesk API",
        "version": __version__,
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP ====================

async def create_indexes(db):
    # One sales deal per VIN
    await db.salesdeals.create_index("vin", unique=True)
    await db.salesdeals.create_index("current_stage")
    await db.deals.create_index("vin")
    await db.deals.create_index("current_stage")
    await db.dealers.create_index("name")
    await db.upload_tokens.create_index("token", unique=True)
    await db.upload_tokens.create_index("expires_at")
    await db.documents.create_index("deal_id")
    await db.event_log.create_index("created_at")


@app.on_event("startup")
async def startup():
    logger.info(f"DealDesk v{__version__} starting")

    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    await create_indexes(get_db())
    logger.info("MongoDB indexes created")

    from dealdesk.services import sync_scheduler as scheduler_module
    scheduler_module.sync_scheduler = scheduler_module.SyncScheduler(settings=settings)
    scheduler_module.sync_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    from dealdesk.services import sync_scheduler as scheduler_module
    if scheduler_module.sync_scheduler:
        scheduler_module.sync_scheduler.stop()
    close_client()
    logger.info("DealDesk stopped")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
