"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for the backend package plus an
    in-memory stand-in for the Motor collections used by the ledger, the
    audit log, the retry queue, the agent directory and the workers.
"""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]

if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "$in":
        return value in operand
    if op == "$nin":
        return value not in operand
    if op == "$ne":
        return value != operand
    if value is None:
        return False
    if op == "$gte":
        return value >= operand
    if op == "$gt":
        return value > operand
    if op == "$lte":
        return value <= operand
    if op == "$lt":
        return value < operand
    raise NotImplementedError(op)


def matches(doc: dict, query: Optional[dict]) -> bool:
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not all(_compare(value, op, operand) for op, operand in cond.items()):
                return False
        elif value != cond:
            return False
    return True


def _sorted(docs: list[dict], keys: list[tuple[str, int]]) -> list[dict]:
    out = list(docs)
    for field, direction in reversed(keys):
        out.sort(key=lambda d: (d.get(field) is not None, d.get(field)), reverse=direction < 0)
    return out


def _sort_keys(key_or_list: Any, direction: Optional[int] = None) -> list[tuple[str, int]]:
    if isinstance(key_or_list, str):
        return [(key_or_list, direction or 1)]
    return list(key_or_list)


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._limit = 0

    def sort(self, key_or_list, direction=None):
        self._docs = _sorted(self._docs, _sort_keys(key_or_list, direction))
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs
        if self._limit:
            docs = docs[: self._limit]
        if length:
            docs = docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    """Just enough of AsyncIOMotorCollection for these services."""

    def __init__(self, unique: Optional[tuple[str, ...]] = None):
        self.docs: list[dict] = []
        self.unique = unique
        self.writes = 0
        self.insert_error: Optional[Exception] = None

    def _first(self, query, sort=None) -> Optional[dict]:
        candidates = [d for d in self.docs if matches(d, query)]
        if sort:
            candidates = _sorted(candidates, _sort_keys(sort))
        return candidates[0] if candidates else None

    async def insert_one(self, doc: dict):
        if self.insert_error is not None:
            raise self.insert_error
        if self.unique and any(
            all(existing.get(k) == doc.get(k) for k in self.unique) for existing in self.docs
        ):
            raise DuplicateKeyError("E11000 duplicate key error")
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        self.writes += 1
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query=None, projection=None, sort=None):
        found = self._first(query, sort)
        return copy.deepcopy(found) if found else None

    def find(self, query=None, projection=None):
        return FakeCursor([d for d in self.docs if matches(d, query)])

    async def find_one_and_update(
        self, query, update, sort=None, return_document=ReturnDocument.BEFORE, upsert=False,
    ):
        found = self._first(query, sort)
        if found is None:
            return None
        before = copy.deepcopy(found)
        found.update(copy.deepcopy(update.get("$set", {})))
        self.writes += 1
        return copy.deepcopy(found) if return_document == ReturnDocument.AFTER else before

    async def update_one(self, query, update, upsert=False):
        found = self._first(query)
        if found is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0)
            found = {k: v for k, v in query.items() if not k.startswith("$")}
            found.setdefault("_id", ObjectId())
            self.docs.append(found)
        found.update(copy.deepcopy(update.get("$set", {})))
        self.writes += 1
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def delete_many(self, query):
        keep = [d for d in self.docs if not matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        self.writes += 1
        return SimpleNamespace(deleted_count=deleted)


def make_fake_db() -> SimpleNamespace:
    return SimpleNamespace(
        bets=FakeCollection(unique=("external_platform_tx_id", "game_code")),
        wallet_audits=FakeCollection(),
        wallet_retry_jobs=FakeCollection(),
        agents=FakeCollection(unique=("agent_id",)),
        worker_state=FakeCollection(),
    )


@pytest.fixture
def fake_db(monkeypatch):
    import wagerlink.database as _db

    db = make_fake_db()
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db
