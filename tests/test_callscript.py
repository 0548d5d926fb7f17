"""
Tests for the callscript codec.

Byte layout, spec id rejection, malformed scripts and recursive decoding of
forward(bytes) segments.
"""

import pytest
from eth_abi import encode as abi_encode

from daopath.abi import FORWARD_SELECTOR, to_hex
from daopath.callscript import (
    CALLSCRIPT_ID,
    Segment,
    decode,
    encode,
    encode_forward_call,
    encode_hex,
    flatten,
    is_forward_call,
    parse_forward_call,
)
from daopath.errors import InvalidAddress, InvalidScript


CAFE = "0xcafe1a77e84698c83ca8931f54a755176ef75f2c"
BEEF = "0xbeefbeef03c7e5a1c29e0aa675f8e16aee0a5fad"
FORWARDER = "0x" + "22" * 20

TWO_SEGMENTS = [
    {"to": CAFE, "data": "0xcafe"},
    {"to": BEEF, "data": "0xbeef"},
]


# ════════════════════════════════════════════════════════════════════════════
# ENCODING
# ════════════════════════════════════════════════════════════════════════════


class TestEncode:
    """Tests for encode()."""

    def test_literal_two_segment_encoding(self):
        """Two segments encode to the exact documented bytes."""
        expected = (
            "0x00000001"
            "cafe1a77e84698c83ca8931f54a755176ef75f2c" "00000002" "cafe"
            "beefbeef03c7e5a1c29e0aa675f8e16aee0a5fad" "00000002" "beef"
        )
        assert encode_hex(TWO_SEGMENTS) == expected

    def test_empty_script_is_spec_id(self):
        """An empty segment list encodes to the bare spec id."""
        assert encode([]) == CALLSCRIPT_ID

    def test_accepts_segments_and_mappings(self):
        """Segment instances and plain mappings encode identically."""
        segments = [Segment(to=s["to"], data=s["data"]) for s in TWO_SEGMENTS]
        assert encode(segments) == encode(TWO_SEGMENTS)

    def test_checksummed_address_is_normalized(self):
        """Mixed-case addresses encode to the same bytes as lower case."""
        upper = [{"to": "0xCAFE1A77E84698C83CA8931F54A755176EF75F2C", "data": b"\xca\xfe"}]
        assert encode(upper) == encode(TWO_SEGMENTS[:1])

    def test_empty_data_segment(self):
        """A segment may carry no data."""
        script = encode([{"to": CAFE, "data": b""}])
        assert script[-4:] == b"\x00\x00\x00\x00"
        assert decode(script) == [Segment(to=CAFE, data=b"")]

    def test_invalid_address_rejected(self):
        """A short address cannot be encoded."""
        with pytest.raises(InvalidAddress):
            encode([{"to": "0x1234", "data": "0x"}])


class TestForwardCall:
    """Tests for forward(bytes) call data."""

    def test_matches_abi_encoding(self):
        """forward call data equals selector + ABI-encoded bytes argument."""
        script = encode(TWO_SEGMENTS)
        expected = FORWARD_SELECTOR + abi_encode(["bytes"], [script])
        assert encode_forward_call(script) == expected

    def test_is_forward_call(self):
        """Only forward(bytes) data with offset and length words qualifies."""
        assert is_forward_call(encode_forward_call(encode(TWO_SEGMENTS)))
        assert not is_forward_call(FORWARD_SELECTOR + b"\x00" * 32)
        assert not is_forward_call("0xcafe")

    def test_parse_forward_call(self):
        """The forwarded script is extracted unchanged."""
        script = encode(TWO_SEGMENTS)
        assert parse_forward_call(encode_forward_call(script)) == script

    def test_parse_rejects_overrun(self):
        """A declared length past the end of the call data is rejected."""
        data = bytearray(encode_forward_call(encode(TWO_SEGMENTS)))
        data[4 + 32:4 + 64] = (10_000).to_bytes(32, "big")
        with pytest.raises(InvalidScript):
            parse_forward_call(bytes(data))


# ════════════════════════════════════════════════════════════════════════════
# DECODING
# ════════════════════════════════════════════════════════════════════════════


class TestDecode:
    """Tests for decode()."""

    def test_round_trip(self):
        """decode(encode(segments)) returns the same segments."""
        segments = [
            Segment(to=CAFE, data=b"\x01\x02\x03"),
            Segment(to=BEEF, data=bytes(range(256))),
            Segment(to=FORWARDER, data=b""),
        ]
        assert decode(encode(segments)) == segments

    def test_literal_fixture(self):
        """The two-segment fixture decodes to its segments."""
        decoded = decode(encode(TWO_SEGMENTS))
        assert [s.to_dict() for s in decoded] == TWO_SEGMENTS

    def test_spec_id_only(self):
        """A bare spec id has no segments."""
        assert decode("0x00000001") == []

    @pytest.mark.parametrize("script", [
        "0x00000002",
        "0x",
        "0xdeadbeef" + "cafe1a77e84698c83ca8931f54a755176ef75f2c" + "00000000",
    ])
    def test_wrong_spec_id_rejected(self, script):
        """Any script not starting with 0x00000001 is rejected at offset 0."""
        with pytest.raises(InvalidScript) as exc_info:
            decode(script)
        assert exc_info.value.offset == 0

    def test_truncated_header(self):
        """A segment header shorter than 24 bytes is rejected."""
        script = CALLSCRIPT_ID + bytes.fromhex(CAFE[2:])[:10]
        with pytest.raises(InvalidScript) as exc_info:
            decode(script)
        assert exc_info.value.offset == 4

    def test_length_overrun(self):
        """A declared length longer than the remaining bytes is rejected."""
        script = CALLSCRIPT_ID + bytes.fromhex(CAFE[2:]) + (5).to_bytes(4, "big") + b"\xca\xfe"
        with pytest.raises(InvalidScript, match="overruns"):
            decode(script)

    def test_invalid_hex_rejected(self):
        """Non-hex input is an InvalidScript, not a bare ValueError."""
        with pytest.raises(InvalidScript):
            decode("0xzz")


class TestNestedDecode:
    """Tests for recursive decoding of forwarded scripts."""

    def test_forward_segment_has_children(self):
        """A forward call wrapping two segments decodes them as children."""
        inner = encode(TWO_SEGMENTS)
        outer = encode([{"to": FORWARDER, "data": encode_forward_call(inner)}])

        segments = decode(outer)

        assert len(segments) == 1
        assert segments[0].to == FORWARDER
        assert segments[0].children == [
            Segment(to=CAFE, data="0xcafe"),
            Segment(to=BEEF, data="0xbeef"),
        ]

    def test_two_levels(self):
        """Forward calls nest to any depth."""
        inner = encode(TWO_SEGMENTS)
        middle = encode([{"to": FORWARDER, "data": encode_forward_call(inner)}])
        outer = encode([{"to": BEEF, "data": encode_forward_call(middle)}])

        top = decode(outer)[0]
        assert top.children[0].to == FORWARDER
        assert [c.to for c in top.children[0].children] == [CAFE, BEEF]

    def test_plain_segment_has_no_children(self):
        """Non-forward data leaves children unset."""
        assert decode(encode(TWO_SEGMENTS))[0].children is None

    def test_malformed_forwarded_script_left_opaque(self):
        """A forwarded payload that is not a valid script is kept as data."""
        bad_inner = CALLSCRIPT_ID + b"\x01\x02"
        data = encode_forward_call(bad_inner)
        segment = decode(encode([{"to": FORWARDER, "data": data}]))[0]
        assert segment.children is None
        assert segment.data == data

    def test_forwarded_non_script_left_opaque(self):
        """A forwarded payload with another spec id is not decoded."""
        data = encode_forward_call(b"\x00\x00\x00\x02")
        assert decode(encode([{"to": FORWARDER, "data": data}]))[0].children is None

    def test_flatten(self):
        """flatten() lists each segment followed by its children."""
        inner = encode(TWO_SEGMENTS)
        outer = encode([
            {"to": FORWARDER, "data": encode_forward_call(inner)},
            {"to": BEEF, "data": "0x01"},
        ])
        assert [s.to for s in flatten(decode(outer))] == [FORWARDER, CAFE, BEEF, BEEF]

    def test_to_dict_includes_children(self):
        """Serialized segments carry nested children."""
        inner = encode(TWO_SEGMENTS)
        data = encode_forward_call(inner)
        as_dict = decode(encode([{"to": FORWARDER, "data": data}]))[0].to_dict()
        assert as_dict == {"to": FORWARDER, "data": to_hex(data), "children": TWO_SEGMENTS}
