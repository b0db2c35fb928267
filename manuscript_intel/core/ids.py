"""Deterministic identifiers and content hashes.

Every id the engine emits is derived from stable inputs (normalized names,
chapter ids, offsets), never from a random source, so repeated analyses of the
same text produce identical ids and merges stay reproducible.
"""

from __future__ import annotations

import hashlib

_ID_DIGEST_CHARS = 12
_SEPARATOR = "\x1f"


def stable_id(prefix: str, *parts: object) -> str:
    """Build a short, deterministic id like ``ent_3fa9c0d1e2b4``."""
    payload = _SEPARATOR.join(str(p) for p in parts)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:_ID_DIGEST_CHARS]}"


def content_hash(text: str) -> str:
    """Full sha256 of a text snapshot, used for cheap equality checks."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
