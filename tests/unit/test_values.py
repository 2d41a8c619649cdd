"""Unit tests for the binary value codec."""

import struct

import pytest

from embedcss_compiler.protocol import (
    DecodeError,
    EncodeError,
    StringList,
    TypeKind,
    decode_value,
    encode_value,
)


def u32(value: int) -> bytes:
    return struct.pack("<I", value)


def sized(data: bytes) -> bytes:
    return u32(len(data)) + data


def nested(depth: int) -> dict:
    """Build a value using every variant, nested ``depth`` levels deep."""
    value = {
        "nil": None,
        "flag": True,
        "count": -42,
        "text": "héllo 世界 🌍",
        "names": StringList(["a", "", "ç"]),
        "raw": b"\x00\xff\x10",
    }
    for level in range(depth):
        value = {
            "level": level,
            "items": [value, None, False, "s", StringList(["x"]), b""],
            "inner": dict(value),
        }
    return value


# =============================================================================
# Tests: Wire format
# =============================================================================


class TestEncodingLayout:
    """Exact bytes for each type tag."""

    def test_nil(self):
        assert encode_value(None) == b"\x00"

    def test_bool(self):
        assert encode_value(True) == b"\x01\x01"
        assert encode_value(False) == b"\x01\x00"

    def test_int_is_little_endian_signed(self):
        assert encode_value(5) == b"\x02" + struct.pack("<i", 5)
        assert encode_value(-1) == b"\x02\xff\xff\xff\xff"

    def test_string(self):
        assert encode_value("ab") == b"\x03" + sized(b"ab")

    def test_string_is_utf8(self):
        assert encode_value("é") == b"\x03" + sized("é".encode())

    def test_string_list_outer_length_is_block_size(self):
        """The outer length counts bytes, not elements."""
        block = sized(b"a") + sized(b"bc")
        assert encode_value(StringList(["a", "bc"])) == b"\x04" + u32(11) + block

    def test_bytes(self):
        assert encode_value(b"\x01\x02") == b"\x05" + sized(b"\x01\x02")

    def test_bytearray_encodes_as_bytes(self):
        assert encode_value(bytearray(b"xy")) == encode_value(b"xy")

    def test_list_is_counted(self):
        assert encode_value([1, None]) == b"\x06" + u32(2) + b"\x02" + u32(1) + b"\x00"

    def test_plain_list_of_strings_is_not_a_string_list(self):
        assert encode_value(["a"])[0] == TypeKind.LIST

    def test_tuple_encodes_as_list(self):
        assert encode_value((1, "a")) == encode_value([1, "a"])

    def test_map_keys_sorted(self):
        expected = b"\x07" + u32(2) + sized(b"a") + b"\x00" + sized(b"b") + b"\x02" + u32(1)
        assert encode_value({"b": 1, "a": None}) == expected


class TestDeterminism:
    """Equal maps encode to identical bytes."""

    def test_insertion_order_ignored(self):
        first = {"Command": "compile", "Args": StringList(["x"]), "Extra": 1}
        second = {"Extra": 1, "Args": StringList(["x"]), "Command": "compile"}

        assert encode_value(first) == encode_value(second)

    def test_nested_maps(self):
        first = {"outer": {"z": 1, "a": [{"k2": 2, "k1": 1}]}}
        second = {"outer": {"a": [{"k1": 1, "k2": 2}], "z": 1}}

        assert encode_value(first) == encode_value(second)

    def test_keys_are_case_sensitive(self):
        encoded = encode_value({"a": 1, "B": 2, "A": 3})

        # Uppercase sorts first
        assert encoded.index(b"A") < encoded.index(b"B") < encoded.index(b"a")
        assert decode_value(encoded) == {"a": 1, "B": 2, "A": 3}


# =============================================================================
# Tests: Round trips
# =============================================================================


class TestRoundTrip:
    """decode(encode(v)) reproduces v."""

    @pytest.mark.parametrize(
        "value",
        [
            None,
            True,
            False,
            0,
            2**31 - 1,
            -(2**31),
            "",
            "日本語テスト 🎌",
            b"",
            bytes(range(256)),
            StringList(),
            StringList(["", "a", "𝔘𝔫𝔦𝔠𝔬𝔡𝔢"]),
            [],
            [None, [], {}, StringList()],
            {},
        ],
    )
    def test_values(self, value):
        assert decode_value(encode_value(value)) == value

    @pytest.mark.parametrize("depth", [0, 1, 2, 3, 4])
    def test_nested(self, depth):
        value = nested(depth)
        assert decode_value(encode_value(value)) == value

    def test_string_list_type_preserved(self):
        decoded = decode_value(encode_value(StringList(["a", "b"])))

        assert isinstance(decoded, StringList)
        assert decoded == ["a", "b"]

    def test_bool_type_preserved(self):
        decoded = decode_value(encode_value([True, 1]))

        assert decoded[0] is True
        assert decoded[1] == 1 and decoded[1] is not True

    def test_bytes_type_preserved(self):
        assert isinstance(decode_value(encode_value(bytearray(b"ab"))), bytes)


# =============================================================================
# Tests: Errors
# =============================================================================


class TestEncodeErrors:
    """Values outside the closed set fail loudly."""

    @pytest.mark.parametrize(
        "value",
        [
            1.5,
            object(),
            {1, 2},
            {1: "a"},
            2**31,
            -(2**31) - 1,
            StringList(["a", 1]),
            "\ud800",
            [1, [2, [object()]]],
            {"ok": {"bad": 1.0}},
        ],
    )
    def test_rejected(self, value):
        with pytest.raises(EncodeError):
            encode_value(value)

    def test_too_deep(self):
        value: list = []
        for _ in range(100):
            value = [value]

        with pytest.raises(EncodeError, match="nested deeper"):
            encode_value(value)


class TestDecodeErrors:
    """Malformed input raises DecodeError."""

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\x08",
            b"\xff",
            b"\x01",
            b"\x02\x01\x02",
            b"\x03" + u32(5) + b"ab",
            b"\x05" + u32(1),
            b"\x06" + u32(2) + b"\x00",
            b"\x06" + u32(0xFFFFFFFF),
            b"\x07" + u32(1) + sized(b"k"),
            b"\x07" + u32(0xFFFFFFFF),
            b"\x03" + sized(b"\xff\xfe"),
        ],
    )
    def test_rejected(self, data):
        with pytest.raises(DecodeError):
            decode_value(data)

    def test_unknown_tag_named(self):
        with pytest.raises(DecodeError, match="unknown type tag: 9"):
            decode_value(b"\x09")

    def test_trailing_bytes(self):
        with pytest.raises(DecodeError, match="trailing"):
            decode_value(b"\x00\x00")

    def test_string_list_entry_overruns_block(self):
        """An inner string may not read past its block."""
        block = u32(10) + b"a"
        data = b"\x04" + sized(block)

        with pytest.raises(DecodeError):
            decode_value(data)

    def test_string_list_block_overruns_data(self):
        with pytest.raises(DecodeError):
            decode_value(b"\x04" + u32(20) + sized(b"a"))

    def test_too_deep(self):
        data = (b"\x06" + u32(1)) * 100 + b"\x00"

        with pytest.raises(DecodeError, match="nested deeper"):
            decode_value(data)


class TestDecodeValues:
    """Decoding details."""

    def test_negative_int(self):
        assert decode_value(b"\x02\xff\xff\xff\xff") == -1

    def test_nonzero_bool_is_true(self):
        assert decode_value(b"\x01\x02") is True

    def test_empty_string_list(self):
        assert decode_value(b"\x04" + u32(0)) == []

    def test_accepts_memoryview(self):
        data = encode_value({"a": StringList(["b"])})
        assert decode_value(memoryview(data)) == {"a": ["b"]}
