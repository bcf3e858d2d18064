"""
DealDesk - Seller Upload Tokens

Issue / verify / consume the links sellers use to upload their documents.
Tokens live in the upload_tokens collection; files are written under
UPLOADS_DIR/seller-uploads/<deal_id>/.
"""

import hashlib
import logging
import re
import secrets
from datetime import timedelta
from pathlib import Path
from typing import Optional, List, Dict, Any

from pymongo import ReturnDocument

from dealdesk.config import Settings, generate_token, now_utc
from dealdesk.models.deal import clean_vin
from dealdesk.models.upload_token import UploadToken, UploadLinkRequest

logger = logging.getLogger("upload_tokens")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ALLOWED_EXTENSIONS = {".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png"}
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_TOTAL_SIZE = 50 * 1024 * 1024  # 50 MB
MAX_FILES = 10


class UploadTokenError(Exception):
    """Base class, carries the HTTP status the route answers with"""
    status_code = 400


class UploadTokenNotFound(UploadTokenError):
    status_code = 404


class UploadTokenExpired(UploadTokenError):
    status_code = 410


class UploadAttemptsExhausted(UploadTokenError):
    status_code = 429


class InvalidUploadRequest(UploadTokenError):
    status_code = 400


# ==================== ISSUE ====================

async def issue_upload_token(db, request: UploadLinkRequest, settings: Settings) -> Dict[str, Any]:
    """Creates a token for one deal. Returns {"token", "upload_link", "expires_at"}."""
    email = (request.seller_email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise InvalidUploadRequest("Invalid email format")

    vin = clean_vin(request.vin)
    if len(vin) != 17:
        raise InvalidUploadRequest("Invalid VIN format. VIN must be 17 characters long.")

    if not (request.vehicle_info or "").strip():
        raise InvalidUploadRequest("vehicle_info is required")

    now = now_utc()
    token = UploadToken(
        token=generate_token(),
        deal_id=request.deal_id,
        deal_kind=request.deal_kind,
        seller_email=email,
        vehicle_info=request.vehicle_info.strip(),
        vin=vin,
        created_at=now,
        expires_at=now + timedelta(days=settings.upload_token_ttl_days),
        max_upload_attempts=settings.max_upload_attempts,
    )
    await db.upload_tokens.insert_one(token.to_document())

    logger.info(f"[UPLOAD TOKEN] Issued {token.token[:8]}... for deal {token.deal_id} ({vin})")
    return {
        "token": token.token,
        "upload_link": f"{settings.frontend_url}/seller-upload/{token.token}",
        "expires_at": token.expires_at.isoformat(),
    }


# ==================== VERIFY / CONSUME ====================

async def get_upload_token(db, token: str) -> UploadToken:
    """Loads a token and checks it is still usable. Does not count an attempt."""
    doc = await db.upload_tokens.find_one({"token": token}, {"_id": 0})
    if not doc:
        raise UploadTokenNotFound("Invalid or expired upload link")

    upload_token = UploadToken(**doc)
    now = now_utc()
    if upload_token.is_expired(now):
        raise UploadTokenExpired("Upload link has expired")
    if not upload_token.is_valid(now):
        raise UploadAttemptsExhausted("Maximum upload attempts reached for this link")
    return upload_token


async def consume_upload_attempt(db, token: str) -> UploadToken:
    """
    Counts one upload attempt against the token and persists it.

    The increment is a single conditional update, so concurrent uploads
    can never push upload_attempts past max_upload_attempts.
    """
    checked = await get_upload_token(db, token)
    now = now_utc()

    doc = await db.upload_tokens.find_one_and_update(
        {
            "token": token,
            "is_active": True,
            "upload_attempts": {"$lt": checked.max_upload_attempts},
        },
        {
            "$inc": {"upload_attempts": 1},
            "$set": {"last_used": now.isoformat()},
        },
        projection={"_id": 0},
        return_document=ReturnDocument.BEFORE,
    )
    if not doc:
        # Used up (or expired) between the check and the update
        await get_upload_token(db, token)
        raise UploadAttemptsExhausted("Maximum upload attempts reached for this link")

    # Same transition, applied to the pre-update state
    upload_token = UploadToken(**doc).register_attempt(now)
    if not upload_token.is_active:
        await db.upload_tokens.update_one({"token": token}, {"$set": {"is_active": False}})

    logger.info(
        f"[UPLOAD TOKEN] {token[:8]}... attempt "
        f"{upload_token.upload_attempts}/{upload_token.max_upload_attempts}"
    )
    return upload_token


# ==================== FILES ====================

def check_upload_files(files: List[tuple]):
    """files: [(original_name, content_bytes)]. Raises InvalidUploadRequest."""
    if not files:
        raise InvalidUploadRequest("No files uploaded")
    if len(files) > MAX_FILES:
        raise InvalidUploadRequest(f"Too many files. Maximum: {MAX_FILES}")

    total = 0
    for name, content in files:
        ext = Path(name or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise InvalidUploadRequest(
                f"Invalid file type for {name}. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        if len(content) > MAX_FILE_SIZE:
            raise InvalidUploadRequest(f"{name} exceeds {MAX_FILE_SIZE // 1024 // 1024} MB")
        total += len(content)

    if total > MAX_TOTAL_SIZE:
        raise InvalidUploadRequest(f"Total file size exceeds {MAX_TOTAL_SIZE // 1024 // 1024} MB")


def store_seller_files(uploads_dir: Path, upload_token: UploadToken, files: List[tuple]) -> List[dict]:
    """Writes the files to disk and returns their metadata records."""
    target = uploads_dir / "seller-uploads" / upload_token.deal_id
    target.mkdir(parents=True, exist_ok=True)

    stored = []
    now = now_utc()
    for name, content in files:
        safe_name = re.sub(r"[^a-zA-Z0-9.-]", "_", name)
        file_name = f"seller_upload_{int(now.timestamp() * 1000)}_{secrets.token_hex(8)}_{safe_name}"
        (target / file_name).write_bytes(content)
        stored.append({
            "original_name": name,
            "file_name": file_name,
            "file_path": str(Path("seller-uploads") / upload_token.deal_id / file_name),
            "file_size": len(content),
            "uploaded_by": upload_token.seller_email,
            "uploaded_at": now.isoformat(),
            "checksum": hashlib.sha256(content).hexdigest(),
        })
    return stored


def deal_collection(upload_token: UploadToken) -> str:
    return "salesdeals" if upload_token.deal_kind.value == "sales" else "deals"


async def attach_seller_files(db, upload_token: UploadToken, stored: List[dict]) -> Optional[dict]:
    """Appends the stored files to the deal's seller_uploaded_documents."""
    collection = db[deal_collection(upload_token)]
    result = await collection.update_one(
        {"id": upload_token.deal_id},
        {"$push": {"seller_uploaded_documents": {"$each": stored}}}
    )
    if result.matched_count == 0:
        logger.warning(f"[UPLOAD TOKEN] Deal {upload_token.deal_id} not found, files kept on disk only")
        return None
    return await collection.find_one({"id": upload_token.deal_id}, {"_id": 0, "id": 1, "vin": 1})
