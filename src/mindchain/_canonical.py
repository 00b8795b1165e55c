"""Deterministic JSON serialization for request digests.

Produces a canonical byte representation by:
- Sorting object keys recursively (lexicographic UTF-16 code unit order;
  integer-like keys get no numeric ordering)
- Leaving array order untouched
- No whitespace (separators=(',', ':'))
- Non-ASCII characters emitted as raw UTF-8

Only JSON values are accepted: dict with str keys, list/tuple, str, int,
finite float, bool, None. Anything else raises MalformedInputError.
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any, Union

from mindchain.exceptions import MalformedInputError

JSONValue = Union[dict, list, tuple, str, int, float, bool, None]


def _sort_key(key: str) -> bytes:
    # Big-endian UTF-16 bytes compare in the same order as UTF-16 code units.
    return key.encode("utf-16-be", "surrogatepass")


def _canonicalize(obj: Any, path: set[int]) -> Any:
    if obj is None or isinstance(obj, (bool, str, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise MalformedInputError(f"Non-finite number is not JSON: {obj!r}")
        return obj
    if isinstance(obj, dict):
        if id(obj) in path:
            raise MalformedInputError("Cyclic reference in request body")
        path.add(id(obj))
        try:
            for key in obj:
                if not isinstance(key, str):
                    raise MalformedInputError(
                        f"Object keys must be strings, got {type(key).__name__}"
                    )
            return {
                k: _canonicalize(obj[k], path)
                for k in sorted(obj, key=_sort_key)
            }
        finally:
            path.discard(id(obj))
    if isinstance(obj, (list, tuple)):
        if id(obj) in path:
            raise MalformedInputError("Cyclic reference in request body")
        path.add(id(obj))
        try:
            return [_canonicalize(item, path) for item in obj]
        finally:
            path.discard(id(obj))
    raise MalformedInputError(
        f"Unsupported type in request body: {type(obj).__name__}"
    )


def canonicalize(body: JSONValue) -> Any:
    """Return a copy of body with every object's keys sorted, recursively."""
    return _canonicalize(body, set())


def canonical_json(body: JSONValue) -> bytes:
    """Produce canonical JSON bytes for a request body.

    The output is deterministic: deep-equal bodies produce the same bytes
    regardless of original key order.
    """
    return json.dumps(
        canonicalize(body),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def digest(body: JSONValue) -> str:
    """SHA-256 of the canonical JSON, as 0x-prefixed lowercase hex."""
    return "0x" + hashlib.sha256(canonical_json(body)).hexdigest()
