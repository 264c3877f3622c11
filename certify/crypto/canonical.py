"""Canonical serialization of a certificate's hashed fields.

The bytes produced here are the only "wire format" that matters for trust:
a fingerprint is recomputed from them years after issuance, so the output
must not depend on dict insertion order, locale or timezone.

Rules:
  - JSON, keys sorted at every nesting level, no whitespace
  - UTF-8, non-ASCII kept as-is (ensure_ascii=False)
  - datetimes as ISO-8601 UTC with milliseconds and a Z suffix
  - UUIDs as their canonical string, enums as their value
  - anything else that is not plain JSON raises SerializationError

Changing any of this changes every fingerprint.  Add a new fingerprint
version instead (see FIELD_SETS).
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from certify.core.errors import SerializationError
from certify.models.certificate import CredentialRecord, ensure_utc

# Hashed field sets per fingerprint version.  Never edit an existing entry.
FIELD_SETS: dict[int, tuple[str, ...]] = {
    1: (
        "id",
        "name",
        "recipientAddress",
        "issuerAddress",
        "issueDate",
        "ipfsHash",
        "metadata",
    ),
    2: (
        "id",
        "name",
        "recipientAddress",
        "issuerAddress",
        "issuerName",
        "issueDate",
        "ipfsHash",
        "metadata",
        "category",
        "subCategory",
    ),
}


def format_timestamp(value: datetime) -> str:
    value = ensure_utc(value)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def fingerprint_fields(record: CredentialRecord, version: int) -> dict[str, Any]:
    """Pick exactly the hashed subset of a record for a fingerprint version."""
    try:
        names = FIELD_SETS[version]
    except KeyError:
        raise SerializationError(f"unknown fingerprint version {version}") from None

    available: dict[str, Any] = {
        "id": str(record.id),
        "name": record.name,
        "recipientAddress": record.recipient_address,
        "issuerAddress": record.issuer_address,
        "issuerName": record.issuer_name,
        "issueDate": format_timestamp(record.issue_date),
        "ipfsHash": record.content_ref,
        "metadata": record.metadata,
        "category": record.category.value if record.category else None,
        "subCategory": record.sub_category,
    }
    return {name: available[name] for name in names}


def serialize(fields: Mapping[str, Any]) -> bytes:
    """Deterministic bytes for a mapping of field values."""
    plain = _to_plain(fields, seen=set(), path="$")
    try:
        text = json.dumps(
            plain,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(str(e)) from e
    return text.encode("utf-8")


def _to_plain(value: Any, *, seen: set[int], path: str) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return _to_plain(value.value, seen=seen, path=path)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(f"non-finite number at {path}")
        return value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)

    if isinstance(value, Mapping):
        marker = id(value)
        if marker in seen:
            raise SerializationError(f"circular reference at {path}")
        seen.add(marker)
        out: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    f"non-string key {key!r} at {path}"
                )
            out[key] = _to_plain(item, seen=seen, path=f"{path}.{key}")
        seen.discard(marker)
        return out

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in seen:
            raise SerializationError(f"circular reference at {path}")
        seen.add(marker)
        items = [
            _to_plain(item, seen=seen, path=f"{path}[{i}]")
            for i, item in enumerate(value)
        ]
        seen.discard(marker)
        return items

    raise SerializationError(
        f"unsupported type {type(value).__name__} at {path}"
    )
