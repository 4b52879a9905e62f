from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from bson.decimal128 import Decimal128


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB stores datetimes without tzinfo. Documents written before the
    client was switched to tz_aware, or fixtures built by hand, can still
    carry naive values; wrap them before comparing with utcnow().
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def iso_timestamp(dt: datetime) -> str:
    """Millisecond ISO 8601 in UTC with a 'Z' suffix (wallet wire format)."""
    return ensure_utc(dt).astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_decimal(value: Any) -> Decimal:
    """Coerce a money value into an exact Decimal.

    Accepts Decimal, Decimal128 (as read back from MongoDB), int and decimal
    strings. Floats go through their shortest repr so 10.5 becomes
    Decimal("10.5") and not its binary expansion.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, Decimal128):
        result = value.to_decimal()
    elif isinstance(value, bool):
        raise ValueError("Boolean is not a money amount")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a decimal amount: {value!r}") from exc
    else:
        raise ValueError(f"Unsupported amount type: {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def wire_number(value: Decimal) -> int | float:
    """Render a Decimal as a JSON number for the wallet wire protocol.

    Non-integral amounts travel as floats, so an amount with more digits
    than a float holds exactly is refused instead of being sent rounded.
    """
    if value == value.to_integral_value():
        return int(value)
    result = float(value)
    if Decimal(repr(result)) != value:
        raise ValueError(f"Amount {value} cannot be sent as a JSON number without rounding")
    return result
