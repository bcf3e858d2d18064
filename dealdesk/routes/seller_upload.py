"""
DealDesk - Routes Seller Upload
- generate-link: back office, issues a token for one deal
- GET/POST /{token}: public, the seller's upload page
"""

import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form

from dealdesk.config import Settings, get_db, get_settings
from dealdesk.models.upload_token import UploadLinkRequest
from dealdesk.routes.auth import require_api_key
from dealdesk.services.event_logger import log_event
from dealdesk.services.upload_tokens import (
    UploadTokenError,
    attach_seller_files,
    check_upload_files,
    consume_upload_attempt,
    deal_collection,
    get_upload_token,
    issue_upload_token,
    store_seller_files,
)

router = APIRouter(prefix="/seller-upload", tags=["Seller Upload"])
logger = logging.getLogger("seller_upload")


def _http_error(e: UploadTokenError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/generate-link")
async def generate_link(
    data: UploadLinkRequest,
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    caller: dict = Depends(require_api_key)
):
    try:
        result = await issue_upload_token(db, data, settings)
    except UploadTokenError as e:
        raise _http_error(e)

    await log_event(
        db, "generate_upload_link", "upload_token", result["token"][:8], user=caller["name"],
        related={"deal_id": data.deal_id, "vin": data.vin}
    )
    return {"success": True, **result}


@router.get("/{token}")
async def verify_link(token: str, db=Depends(get_db)):
    """Checks the link (public). Does not count an attempt."""
    try:
        upload_token = await get_upload_token(db, token)
    except UploadTokenError as e:
        raise _http_error(e)

    return {
        "valid": True,
        "vehicle_info": upload_token.vehicle_info,
        "vin": upload_token.vin,
        "expires_at": upload_token.expires_at.isoformat(),
        "attempts_left": upload_token.max_upload_attempts - upload_token.upload_attempts,
    }


@router.post("/{token}")
async def upload_documents(
    token: str,
    documents: List[UploadFile] = File(...),
    form_data: Optional[str] = Form(None),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """Seller document upload (public, one attempt per call)."""
    checklist = None
    if form_data:
        try:
            checklist = json.loads(form_data)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid form data format")
        if not isinstance(checklist, dict):
            raise HTTPException(status_code=400, detail="Invalid form data format")
        if not checklist.get("consent_agreement"):
            raise HTTPException(status_code=400, detail="Seller consent is required to proceed")

    files = [(f.filename, await f.read()) for f in documents]

    try:
        upload_token = await consume_upload_attempt(db, token)
        check_upload_files(files)
    except UploadTokenError as e:
        raise _http_error(e)

    stored = store_seller_files(settings.uploads_dir, upload_token, files)
    deal = await attach_seller_files(db, upload_token, stored)

    if checklist and deal:
        await db[deal_collection(upload_token)].update_one(
            {"id": upload_token.deal_id},
            {"$set": {"seller_checklist": {
                **checklist,
                "submitted_by": upload_token.seller_email,
                "submitted_at": stored[0]["uploaded_at"],
            }}}
        )

    await log_event(
        db, "seller_documents_uploaded", "upload_token", token[:8], user=upload_token.seller_email,
        details={"files": [f["original_name"] for f in stored]},
        related={"deal_id": upload_token.deal_id, "vin": upload_token.vin}
    )
    logger.info(f"[SELLER UPLOAD] {len(stored)} file(s) for deal {upload_token.deal_id}")

    return {
        "success": True,
        "uploaded": [{"original_name": f["original_name"], "file_size": f["file_size"]} for f in stored],
        "attempts_left": upload_token.max_upload_attempts - upload_token.upload_attempts,
    }
