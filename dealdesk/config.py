"""
DealDesk - Configuration and shared helpers

Settings are read once from the environment (after .env) into a Settings
struct. Routes receive it, and the Mongo database handle, through
Depends(get_settings) / Depends(get_db).
"""

import os
import secrets
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic import BaseModel, Field

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR.parent / '.env')


class OrganizationIdentity(BaseModel):
    """The dealership's own identity, printed on generated documents."""
    name: str = "RP Exotics"
    email: str = "titling@rpexotics.com"
    phone: str = "(314) 970-2427"
    address: str = "1155 N Warson Rd, Saint Louis, MO 63132"
    license_number: str = "D4865"
    tier: str = "Tier 1"
    type: str = "dealer"


class Settings(BaseModel):
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "dealdesk"
    api_key: str = ""
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    uploads_dir: Path = Path("uploads")
    frontend_url: str = "http://localhost:3000"
    upload_token_ttl_days: int = 7
    max_upload_attempts: int = 3
    sync_interval_minutes: int = 0
    document_batch_delay_seconds: float = 2.0
    organization: OrganizationIdentity = Field(default_factory=OrganizationIdentity)


def load_settings() -> Settings:
    """Build Settings from environment variables."""
    env = os.environ
    org_defaults = OrganizationIdentity()
    organization = OrganizationIdentity(
        name=env.get('ORG_NAME', org_defaults.name),
        email=env.get('ORG_EMAIL', org_defaults.email),
        phone=env.get('ORG_PHONE', org_defaults.phone),
        address=env.get('ORG_ADDRESS', org_defaults.address),
        license_number=env.get('ORG_LICENSE_NUMBER', org_defaults.license_number),
    )
    return Settings(
        mongo_url=env.get('MONGO_URL', 'mongodb://localhost:27017'),
        db_name=env.get('DB_NAME', 'dealdesk'),
        api_key=env.get('API_KEY', ''),
        cors_origins=[o.strip() for o in env.get('CORS_ORIGINS', '*').split(',') if o.strip()],
        uploads_dir=Path(env.get('UPLOADS_DIR', 'uploads')),
        frontend_url=env.get('FRONTEND_URL', 'http://localhost:3000').rstrip('/'),
        upload_token_ttl_days=int(env.get('UPLOAD_TOKEN_TTL_DAYS', '7')),
        max_upload_attempts=int(env.get('MAX_UPLOAD_ATTEMPTS', '3')),
        sync_interval_minutes=int(env.get('SYNC_INTERVAL_MINUTES', '0')),
        document_batch_delay_seconds=float(env.get('DOCUMENT_BATCH_DELAY_SECONDS', '2.0')),
        organization=organization,
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()


# ==================== MONGODB ====================

_client: Optional[AsyncIOMotorClient] = None


def get_client(settings: Optional[Settings] = None) -> AsyncIOMotorClient:
    global _client
    if _client is None:
        settings = settings or get_settings()
        _client = AsyncIOMotorClient(settings.mongo_url)
    return _client


def get_db() -> AsyncIOMotorDatabase:
    """FastAPI dependency: the application database."""
    settings = get_settings()
    return get_client(settings)[settings.db_name]


def close_client():
    global _client
    if _client is not None:
        _client.close()
        _client = None


# ==================== HELPERS ====================

def new_id() -> str:
    return str(uuid.uuid4())


def generate_token() -> str:
    """Random hex token (32 bytes)"""
    return secrets.token_hex(32)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time, ISO 8601"""
    return now_utc().isoformat()


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO string (or pass a datetime through), always timezone-aware."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
