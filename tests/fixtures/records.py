"""Record type and in-memory byte sources shared by the tests."""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class Item(BaseModel):
    """Record type matching generate_test_data.make_record."""
    id: str
    timestamp: int
    metric_1: float
    metric_2: float
    status: bool
    category: str
    tags: List[str]


class TrickleSource:
    """Byte source that hands out a scripted sequence of reads, then EOF."""

    def __init__(self, pieces: List[bytes]):
        self.pieces = list(pieces)
        self.calls = 0

    def read(self, n: int) -> bytes:
        self.calls += 1
        if not self.pieces:
            return b''
        piece = self.pieces.pop(0)
        if len(piece) > n:
            self.pieces.insert(0, piece[n:])
            piece = piece[:n]
        return piece


class AsyncBytesSource:
    """Minimal ``async read(n)`` source over a bytes payload."""

    def __init__(self, payload: bytes):
        self.payload = payload
        self.pos = 0

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self.payload) - self.pos
        chunk = self.payload[self.pos:self.pos + n]
        self.pos += len(chunk)
        return chunk


def items_bytes(records: List[Dict[str, Any]], field: Optional[str] = "items", gap: str = "") -> bytes:
    """Serialise records as {"<field>":[...]} (or a bare array) with compact records."""
    body = ("," + gap).join(json.dumps(r, separators=(",", ":")) for r in records)
    if field is None:
        return f"[{body}]".encode()
    return f'{{{json.dumps(field)}:[{body}]}}'.encode()
