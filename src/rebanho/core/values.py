"""Document value codec.

The document database stores every field as a typed value
(``{"stringValue": "0099"}``, ``{"timestampValue": "..."}`` and so on).
These helpers convert between plain Python values and that representation.

Rules applied on encode:
- ``None`` is stripped (never transmitted), including inside maps and arrays
- ``datetime`` becomes a UTC timestamp
- ``date`` becomes the timestamp at noon UTC of that day, so the calendar day
  survives any time-zone conversion on the reading side
- enums are stored by value
"""

import re
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

_FRACTION = re.compile(r"\.(\d+)")


def _to_timestamp(value: date) -> str:
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=UTC)
    else:
        dt = datetime.combine(value, time(hour=12), tzinfo=UTC)
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_timestamp(raw: str) -> datetime:
    # The backend emits up to nanosecond precision; datetime holds microseconds
    raw = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), raw, count=1)
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def strip_none(data: Any) -> Any:
    """Recursively drop None values from dicts and lists."""
    if isinstance(data, dict):
        return {k: strip_none(v) for k, v in data.items() if v is not None}
    if isinstance(data, (list, tuple)):
        return [strip_none(v) for v in data if v is not None]
    return data


def encode_value(value: Any) -> dict:
    """Encode a single Python value as a typed document value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, date):
        return {"timestampValue": _to_timestamp(value)}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value if v is not None]}}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def encode_fields(data: dict) -> dict:
    """Encode a mapping of field name -> value, stripping None values."""
    return {key: encode_value(value) for key, value in data.items() if value is not None}


def decode_value(value: dict) -> Any:
    """Decode a typed document value into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return value["booleanValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return _parse_timestamp(value["timestampValue"])
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        return value["geoPointValue"]
    if "bytesValue" in value:
        return value["bytesValue"]
    raise ValueError(f"Unknown value type: {list(value)}")


def decode_fields(fields: dict) -> dict:
    """Decode a mapping of field name -> typed value."""
    return {key: decode_value(value) for key, value in fields.items()}


def decode_document(document: dict) -> tuple[str, dict]:
    """Decode a document resource into ``(document_id, fields)``."""
    doc_id = document["name"].rsplit("/", 1)[-1]
    return doc_id, decode_fields(document.get("fields", {}))
