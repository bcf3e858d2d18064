"""
Shared fixtures.

FakeDatabase implements the subset of the Motor API the services use
(find / find_one / find_one_and_update / insert_one / update_one /
update_many / delete_one / count_documents / create_index), in memory,
so services and routes run without a MongoDB server.
"""

import asyncio
import copy
import itertools
import re
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from dealdesk.config import Settings, get_db, get_settings, new_id, now_iso


# ═══════════════════════════════════════════════════════════════
# IN-MEMORY MOTOR
# ═══════════════════════════════════════════════════════════════

_MISSING = object()
_object_ids = itertools.count(1)


def _get_path(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


def _match_condition(value, cond):
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$options":
                continue
            if op == "$in" and (value is _MISSING or value not in arg):
                return False
            if op == "$nin" and value is not _MISSING and value in arg:
                return False
            if op == "$ne" and value == arg:
                return False
            if op == "$exists" and (value is not _MISSING) != bool(arg):
                return False
            if op in ("$gt", "$gte", "$lt", "$lte"):
                if value is _MISSING or value is None:
                    return False
                if op == "$gt" and not value > arg:
                    return False
                if op == "$gte" and not value >= arg:
                    return False
                if op == "$lt" and not value < arg:
                    return False
                if op == "$lte" and not value <= arg:
                    return False
            if op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(arg, value, flags):
                    return False
        return True
    if value is _MISSING:
        return cond is None
    return value == cond


def matches(doc, query):
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
        elif not _match_condition(_get_path(doc, key), cond):
            return False
    return True


def project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    include = [k for k, v in projection.items() if v and k != "_id"]
    if include:
        out = {}
        for key in include:
            value = _get_path(doc, key)
            if value is not _MISSING:
                _set_path(out, key, value)
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = doc["_id"]
        return out
    for key, v in projection.items():
        if not v:
            doc.pop(key, None)
    return doc


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, key, direction=1):
        present = [d for d in self._docs if _get_path(d, key) not in (_MISSING, None)]
        absent = [d for d in self._docs if _get_path(d, key) in (_MISSING, None)]
        present.sort(key=lambda d: _get_path(d, key), reverse=direction == -1)
        self._docs = absent + present if direction == 1 else present + absent
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _window(self):
        docs = self._docs[self._skip:]
        return docs[:self._limit] if self._limit else docs

    async def to_list(self, length=None):
        docs = self._window()
        return docs[:length] if length else docs

    def __aiter__(self):
        self._iter = iter(self._window())
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_fields = set()

    def ensure_unique(self, field):
        self.unique_fields.add(field)

    async def create_index(self, keys, unique=False, **kwargs):
        if unique and isinstance(keys, str):
            self.ensure_unique(keys)
        return keys

    def find(self, query=None, projection=None):
        return FakeCursor([project(d, projection) for d in self.docs if matches(d, query)])

    async def find_one(self, query=None, projection=None):
        found = next((project(d, projection) for d in self.docs if matches(d, query)), None)
        # Hand control back like a network round trip would, after the read
        await asyncio.sleep(0)
        return found

    async def find_one_and_update(self, query, update, projection=None,
                                  return_document=ReturnDocument.BEFORE):
        for d in self.docs:
            if matches(d, query):
                before = project(d, projection)
                self._apply(d, update)
                return project(d, projection) if return_document == ReturnDocument.AFTER else before
        return None

    async def insert_one(self, doc):
        for field in self.unique_fields:
            value = _get_path(doc, field)
            if value is not _MISSING and any(_get_path(d, field) == value for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}_1")
        doc.setdefault("_id", f"oid-{next(_object_ids)}")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    @staticmethod
    def _apply(doc, update):
        for path, value in update.get("$set", {}).items():
            _set_path(doc, path, copy.deepcopy(value))
        for path, value in update.get("$inc", {}).items():
            current = _get_path(doc, path)
            _set_path(doc, path, (0 if current in (_MISSING, None) else current) + value)
        for path, value in update.get("$push", {}).items():
            current = _get_path(doc, path)
            items = list(current) if isinstance(current, list) else []
            if isinstance(value, dict) and "$each" in value:
                items.extend(copy.deepcopy(value["$each"]))
            else:
                items.append(copy.deepcopy(value))
            _set_path(doc, path, items)

    async def update_one(self, query, update):
        for d in self.docs:
            if matches(d, query):
                self._apply(d, update)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, query, update):
        hits = [d for d in self.docs if matches(d, query)]
        for d in hits:
            self._apply(d, update)
        return SimpleNamespace(matched_count=len(hits), modified_count=len(hits))

    async def delete_one(self, query):
        for i, d in enumerate(self.docs):
            if matches(d, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


# ═══════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════

API_KEY = "test-api-key"


@pytest.fixture
def db():
    database = FakeDatabase()
    database.salesdeals.ensure_unique("vin")
    database.upload_tokens.ensure_unique("token")
    return database


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_key=API_KEY,
        uploads_dir=tmp_path / "uploads",
        frontend_url="https://docs.example.com",
        document_batch_delay_seconds=0,
    )


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def client(db, settings):
    """TestClient on the app with the fake database (startup hooks not run)."""
    from dealdesk.server import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_deal():
    """Stored finance deal, overridable per test."""
    def _make(**overrides):
        deal = {
            "id": new_id(),
            "vin": "WP0AB2A71KS123456",
            "year": 2019,
            "make": "Porsche",
            "model": "911 Carrera S",
            "vehicle": "2019 Porsche 911 Carrera S",
            "stock_number": "RP1001",
            "color": "GT Silver",
            "mileage": 12450,
            "purchase_price": 100000.0,
            "wholesale_price": 108000.0,
            "deal_type": "retail",
            "deal_subtype": "buy",
            "seller": {
                "name": "Gateway Motors",
                "type": "dealer",
                "contact": {"email": "sales@gatewaymotors.com", "phone": "(314) 555-0101"},
            },
            "buyer": None,
            "current_stage": "contract-received",
            "priority": "medium",
            "workflow_history": [],
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        deal.update(overrides)
        return deal
    return _make
