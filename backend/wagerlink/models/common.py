"""
backend/wagerlink/models/common.py

Purpose:
    Shared Pydantic V2 model helpers: an exact-decimal money type and a base
    class that converts between Mongo documents (``_id`` as ObjectId) and
    domain models (``id`` as str).

Dependencies:
    - bson.ObjectId
    - pydantic
    - wagerlink.utils
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from bson import ObjectId
from pydantic import BaseModel, BeforeValidator, field_validator

from wagerlink.utils import ensure_utc, to_decimal

# Exact fixed-point amount. Accepts "10.500", Decimal, Decimal128 and ints.
Money = Annotated[Decimal, BeforeValidator(to_decimal)]


def to_mongo_value(value: Any) -> Any:
    """Unwrap enums recursively so documents hold plain BSON-encodable values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_mongo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_mongo_value(v) for v in value]
    return value


class MongoDocument(BaseModel):
    """Base for models persisted as one document per instance."""

    id: Optional[str] = None

    @field_validator("*", mode="after")
    @classmethod
    def _datetimes_are_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value

    @classmethod
    def from_document(cls, doc: dict[str, Any]):
        data = dict(doc)
        raw_id = data.pop("_id", None)
        if raw_id is not None:
            data["id"] = str(raw_id)
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        doc = to_mongo_value(self.model_dump(exclude={"id"}))
        if self.id is not None:
            doc["_id"] = ObjectId(self.id)
        return doc
