"""Canonical form and content hash of an insight context.

Two contexts that differ only in key order or in how a datetime is typed
produce the same canonical form, and therefore the same digest.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any


def canonicalize(value: Any) -> Any:
    """Recursively sort mapping keys and turn datetimes and enums into plain values."""
    if isinstance(value, dict):
        return {str(k): canonicalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, list | tuple):
        return [canonicalize(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def canonical_json(context: dict[str, Any]) -> str:
    return json.dumps(canonicalize(context), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def context_hash(context: dict[str, Any]) -> str:
    """64-char SHA-256 hex digest of the compact canonical JSON."""
    return hashlib.sha256(canonical_json(context).encode("utf-8")).hexdigest()
