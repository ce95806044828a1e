"""
Hashing and block chaining for uploaded documents.
Pure functions only; persistence lives in document_service.
"""
from __future__ import annotations

import hashlib
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

SENTINEL_HASH = "0"

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-zA-Z0-9._-]")


def hash_document(data: bytes) -> str:
    """SHA-256 hex digest of the full document content."""
    return hashlib.sha256(data).hexdigest()


def sanitize_filename(name: str) -> str:
    """
    Normalise an uploaded filename into a storage key.
    Distinct names can collapse to the same key; the later upload wins.
    """
    sanitized = _DISALLOWED.sub("", _WHITESPACE.sub("_", name or "")).lower()
    if not sanitized.strip("._"):
        raise ValueError(f"Filename {name!r} has no usable characters")
    return sanitized


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass
class Block:
    """A document hash bound to the hash of the block before it."""
    document_hash: str
    previous_hash: str
    timestamp: int
    document: Dict[str, Any]
    block_hash: str = ""

    def body(self) -> Dict[str, Any]:
        return {
            "hash": self.document_hash,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "document": self.document,
        }

    def compute_hash(self) -> str:
        return hashlib.sha256(canonical_json(self.body()).encode("utf-8")).hexdigest()

    def to_payload(self) -> Dict[str, Any]:
        """Block body plus its own hash, as stored in verification_data."""
        return {**self.body(), "block_hash": self.block_hash}


def append_block(
    document_hash: str,
    previous_block_hash: Optional[str],
    document_descriptor: Dict[str, Any],
    timestamp: Optional[int] = None,
) -> Block:
    """Build the next block; timestamp is epoch milliseconds."""
    block = Block(
        document_hash=document_hash,
        previous_hash=previous_block_hash or SENTINEL_HASH,
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        document=dict(document_descriptor),
    )
    block.block_hash = block.compute_hash()
    return block


@dataclass
class ChainWalk:
    """Result of following previous_hash links back from the newest block."""
    visited: List[Any] = field(default_factory=list)
    reached_sentinel: bool = False
    breaks: List[str] = field(default_factory=list)
    forks: List[str] = field(default_factory=list)

    @property
    def intact(self) -> bool:
        return self.reached_sentinel and not self.breaks and not self.forks


def walk_chain(records: Iterable[Any]) -> ChainWalk:
    """
    Walk a chain given its records in insertion order.

    Records need ``document_name``, ``block_hash`` and ``previous_hash``
    attributes. Only the newest record's ancestry is visited; a
    previous_hash that matches no record (left behind by a deletion) is
    reported in ``breaks`` and ends the walk.
    """
    records = list(records)
    walk = ChainWalk()

    seen_previous: Dict[str, str] = {}
    for record in records:
        if record.previous_hash in seen_previous:
            walk.forks.append(record.document_name)
        else:
            seen_previous[record.previous_hash] = record.document_name

    if not records:
        walk.reached_sentinel = True
        return walk

    by_block_hash = {record.block_hash: record for record in records}
    current = records[-1]
    while True:
        walk.visited.append(current)
        if current.previous_hash == SENTINEL_HASH:
            walk.reached_sentinel = True
            break
        parent = by_block_hash.get(current.previous_hash)
        if parent is None:
            walk.breaks.append(current.document_name)
            break
        if len(walk.visited) > len(records):
            # A cycle can only come from tampered rows
            walk.breaks.append(current.document_name)
            break
        current = parent
    return walk
