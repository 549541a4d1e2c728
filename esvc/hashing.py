"""
Content-derived event identifiers.

An event id is the BLAKE2b-512 digest of the event's canonical JSON encoding,
rendered as ``blake2b512:<unpadded url-safe base64>``. Identical content always
yields an identical id, so the same event created on two branches collapses
into one graph node.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any

from .errors import HashDecodeError

HASH_PREFIX = "blake2b512:"
DIGEST_SIZE = 64


def canonical_json(content: Any) -> str:
    """Serialize content deterministically (sorted keys, compact separators)."""
    return json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def compute_hash(content: bytes | str | dict[str, Any]) -> str:
    """
    Compute the id string for raw bytes, a string, or a JSON-compatible dict.

    Dicts are hashed through their canonical JSON form.
    """
    if isinstance(content, dict):
        content = canonical_json(content)
    if isinstance(content, str):
        content = content.encode("utf-8")
    digest = hashlib.blake2b(content, digest_size=DIGEST_SIZE).digest()
    return format_hash(digest)


def format_hash(digest: bytes) -> str:
    encoded = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return f"{HASH_PREFIX}{encoded}"


def parse_hash(value: str) -> bytes:
    """
    Decode an id string back to its raw digest.

    Raises:
        HashDecodeError: unknown prefix, invalid base64, or wrong digest length
    """
    if not value.startswith(HASH_PREFIX):
        prefix = value.split(":", 1)[0]
        raise HashDecodeError(f"invalid hash prefix '{prefix}'")

    body = value[len(HASH_PREFIX):]
    padded = body + "=" * (-len(body) % 4)
    try:
        digest = base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise HashDecodeError(f"base64 decoding error: {e}") from e

    if len(digest) != DIGEST_SIZE:
        raise HashDecodeError(
            f"concrete hash part has wrong length (got {len(digest)}, expected {DIGEST_SIZE})"
        )
    return digest


def is_event_id(value: str) -> bool:
    """True when value parses as an event id."""
    try:
        parse_hash(value)
    except HashDecodeError:
        return False
    return True


def short_id(event_id: str, length: int = 12) -> str:
    """Abbreviated id for log lines and DOT labels."""
    return event_id[len(HASH_PREFIX):][:length] if event_id.startswith(HASH_PREFIX) else event_id[:length]
