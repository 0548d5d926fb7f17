"""
daopath Callscript Codec

Binary call scripts as executed by the kernel's CallsScript executor.

Layout
──────

    ┌──────────┬─────────────────────────────────────────────────────────┐
    │ 4 bytes  │ spec id 0x00000001                                      │
    ├──────────┼─────────────────────────────────────────────────────────┤
    │ 20 bytes │ to                                                      │ ┐
    │ 4 bytes  │ len(data), big-endian                                   │ │ repeated
    │ L bytes  │ data                                                    │ ┘
    └──────────┴─────────────────────────────────────────────────────────┘

A segment whose data is a ``forward(bytes)`` invocation carrying another
callscript is decoded recursively into ``children``. A forwarded payload
that fails to decode is kept as opaque data.

All functions are pure and reentrant.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from daopath.abi import FORWARD_SELECTOR, HexOrBytes, normalize_address, to_bytes, to_hex
from daopath.errors import InvalidScript

logger = logging.getLogger(__name__)

CALLSCRIPT_ID = bytes.fromhex("00000001")

_ADDRESS_SIZE = 20
_LENGTH_SIZE = 4
_HEADER_SIZE = _ADDRESS_SIZE + _LENGTH_SIZE
_WORD = 32


@dataclass
class Segment:
    """One call inside a script."""
    to: str
    data: bytes
    children: Optional[List["Segment"]] = None

    def __post_init__(self) -> None:
        self.to = normalize_address(self.to, "to")
        self.data = to_bytes(self.data)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"to": self.to, "data": to_hex(self.data)}
        if self.children is not None:
            result["children"] = [c.to_dict() for c in self.children]
        return result


# ════════════════════════════════════════════════════════════════════════════
# ENCODING
# ════════════════════════════════════════════════════════════════════════════

def encode(segments: Sequence[Any]) -> bytes:
    """
    Encode segments into a callscript.

    Accepts ``Segment`` instances or mappings with ``to`` and ``data``.
    ``encode([])`` is the bare spec id.
    """
    out = bytearray(CALLSCRIPT_ID)
    for segment in segments:
        if not isinstance(segment, Segment):
            segment = Segment(to=segment["to"], data=segment["data"])
        out += bytes.fromhex(segment.to[2:])
        out += len(segment.data).to_bytes(_LENGTH_SIZE, "big")
        out += segment.data
    return bytes(out)


def encode_hex(segments: Sequence[Any]) -> str:
    return to_hex(encode(segments))


def encode_forward_call(script: HexOrBytes) -> bytes:
    """Call data for ``forward(bytes)`` with ``script`` as the argument."""
    payload = to_bytes(script)
    padding = (-len(payload)) % _WORD
    return (
        FORWARD_SELECTOR
        + _WORD.to_bytes(_WORD, "big")
        + len(payload).to_bytes(_WORD, "big")
        + payload
        + b"\x00" * padding
    )


# ════════════════════════════════════════════════════════════════════════════
# DECODING
# ════════════════════════════════════════════════════════════════════════════

def decode(script: HexOrBytes) -> List[Segment]:
    """
    Decode a callscript into its segments.

    Raises:
        InvalidScript: wrong spec id, truncated header or overrunning length
    """
    try:
        raw = to_bytes(script)
    except (TypeError, ValueError) as exc:
        raise InvalidScript(str(exc)) from exc

    if raw[:4] != CALLSCRIPT_ID:
        raise InvalidScript(f"Unknown script spec id {to_hex(raw[:4])}", offset=0)

    segments: List[Segment] = []
    position = len(CALLSCRIPT_ID)
    while position < len(raw):
        if len(raw) - position < _HEADER_SIZE:
            raise InvalidScript("Truncated segment header", offset=position)

        to = to_hex(raw[position:position + _ADDRESS_SIZE])
        length = int.from_bytes(
            raw[position + _ADDRESS_SIZE:position + _HEADER_SIZE], "big"
        )
        start = position + _HEADER_SIZE
        end = start + length
        if end > len(raw):
            raise InvalidScript(
                f"Segment length {length} overruns script of {len(raw)} bytes",
                offset=position,
            )

        data = raw[start:end]
        segments.append(Segment(to=to, data=data, children=_decode_children(data)))
        position = end

    return segments


def _decode_children(data: bytes) -> Optional[List[Segment]]:
    if not is_forward_call(data):
        return None
    try:
        payload = parse_forward_call(data)
    except InvalidScript:
        return None
    if payload[:4] != CALLSCRIPT_ID:
        return None
    try:
        return decode(payload)
    except InvalidScript as exc:
        logger.debug("Forwarded payload left undecoded: %s", exc)
        return None


def is_forward_call(data: HexOrBytes) -> bool:
    """True if ``data`` invokes ``forward(bytes)`` with room for offset and length."""
    raw = to_bytes(data)
    return raw[:4] == FORWARD_SELECTOR and len(raw) - 4 >= 2 * _WORD


def parse_forward_call(data: HexOrBytes) -> bytes:
    """
    Extract the ``bytes`` argument of a ``forward(bytes)`` call.

    The first word is the offset of the argument; the word at that offset is
    its length and the payload follows immediately after.
    """
    params = to_bytes(data)[4:]
    if len(params) < _WORD:
        raise InvalidScript("Forward call too short for its offset word")

    offset = int.from_bytes(params[:_WORD], "big")
    if offset + _WORD > len(params):
        raise InvalidScript("Forward call offset out of range", offset=4 + offset)

    length = int.from_bytes(params[offset:offset + _WORD], "big")
    start = offset + _WORD
    if start + length > len(params):
        raise InvalidScript(
            f"Forwarded script length {length} overruns call data", offset=4 + offset
        )
    return params[start:start + length]


def flatten(segments: Sequence[Segment]) -> List[Segment]:
    """Depth-first list of segments, each followed by its children."""
    result: List[Segment] = []
    for segment in segments:
        result.append(segment)
        if segment.children:
            result.extend(flatten(segment.children))
    return result


__all__ = [
    "CALLSCRIPT_ID",
    "Segment",
    "encode",
    "encode_hex",
    "encode_forward_call",
    "decode",
    "is_forward_call",
    "parse_forward_call",
    "flatten",
]
