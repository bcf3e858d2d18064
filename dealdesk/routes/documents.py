"""
DealDesk - Routes Documents
Generation, listing and download of the PDFs of a deal.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from dealdesk.config import Settings, get_db, get_settings
from dealdesk.routes.auth import require_api_key
from dealdesk.services.document_generator import generate_deal_documents
from dealdesk.services.event_logger import log_event

router = APIRouter(prefix="/documents", tags=["Documents"])
logger = logging.getLogger("documents")


@router.post("/generate/{deal_id}")
async def generate_documents(
    deal_id: str,
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    caller: dict = Depends(require_api_key)
):
    """
    Generates the documents of the deal.
    A bill of sale whose parties cannot be identified is refused (422)
    when nothing else could be produced.
    """
    deal = await db.deals.find_one({"id": deal_id}, {"_id": 0})
    if not deal:
        raise HTTPException(status_code=404, detail="Deal not found")

    result = await generate_deal_documents(db, deal, settings)

    await log_event(
        db, "generate_documents", "deal", deal_id, user=caller["name"],
        details={
            "generated": [d["kind"] for d in result["documents"]],
            "errors": result["errors"],
        },
        related={"vin": deal.get("vin")}
    )

    if not result["documents"] and result["errors"]:
        raise HTTPException(status_code=422, detail=result["errors"])

    return {"success": not result["errors"], **result}


@router.get("/deal/{deal_id}")
async def list_deal_documents(deal_id: str, db=Depends(get_db), caller: dict = Depends(require_api_key)):
    documents = await db.documents.find({"deal_id": deal_id}, {"_id": 0}).sort("created_at", -1).to_list(100)
    for d in documents:
        d["url"] = f"/api/documents/{d['id']}/download"
    return {"documents": documents, "count": len(documents)}


@router.get("/{document_id}/download")
async def download_document(
    document_id: str,
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    caller: dict = Depends(require_api_key)
):
    document = await db.documents.find_one({"id": document_id}, {"_id": 0})
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    file_path = settings.uploads_dir / "documents" / document["file_name"]
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(file_path, media_type="application/pdf", filename=document["file_name"])
