from __future__ import annotations

import json

import cbor2

from .constants import ENCODING_CBOR, ENCODING_JSON


def encode(obj, encoding: str = ENCODING_JSON) -> str | bytes:
    if encoding == ENCODING_CBOR:
        return cbor2.dumps(obj)
    if encoding == ENCODING_JSON:
        return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    raise ValueError(f"unsupported encoding {encoding!r}")


def decode(data: str | bytes):
    # Binary frames carry CBOR, text frames carry JSON.
    if isinstance(data, (bytes, bytearray, memoryview)):
        return cbor2.loads(bytes(data))
    return json.loads(data)


def frame_size(data: str | bytes) -> int:
    """Size of a frame on the wire; text frames are sent as UTF-8."""
    if isinstance(data, str):
        return len(data.encode("utf-8"))
    return len(data)
