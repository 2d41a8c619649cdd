"""Binary value codec.

Encodes the closed set of payload types carried by protocol packets.

Wire format (all integers little-endian):

    value := tag:u8 body

    tag  Python type      body
    ---  ---------------  ------------------------------------------------
    0    None             (empty)
    1    bool             u8 (0 or 1)
    2    int              i32
    3    str              u32 length + UTF-8 bytes
    4    StringList       u32 block size + (u32 length + UTF-8 bytes)*
    5    bytes            u32 length + raw bytes
    6    list / tuple     u32 count + value*
    7    dict[str, ...]   u32 count + (u32 length + key bytes + value)*

Map keys are written in sorted order so that equal maps always produce
identical bytes, whatever order they were built in.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import Any

from .errors import DecodeError, EncodeError

_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
UINT32_MAX = 2**32 - 1

# Values are built fresh per packet; this only bounds hostile input.
MAX_DEPTH = 64

# None | bool | int | str | StringList | bytes | list[Value] | dict[str, Value]
Value = Any


class TypeKind(IntEnum):
    """Type tags of the wire encoding."""

    NIL = 0
    BOOL = 1
    INT = 2
    STRING = 3
    STRING_LIST = 4
    BYTES = 5
    LIST = 6
    MAP = 7


class StringList(list):
    """A list of strings encoded as one length-prefixed block (tag 4).

    Plain lists are always encoded element by element (tag 6), even when
    every element happens to be a string. Decoding tag 4 yields a StringList,
    which compares equal to a plain list with the same items.
    """

    def __repr__(self) -> str:
        return f"StringList({list.__repr__(self)})"


# =============================================================================
# Encoding
# =============================================================================


def encode_value(value: Value) -> bytes:
    """Encode a value.

    Raises:
        EncodeError: If the value (or anything nested in it) is outside the
            closed set of wire types. Nothing is produced in that case.
    """
    out = bytearray()
    _encode_into(out, value, 0)
    return bytes(out)


def encode_value_into(out: bytearray, value: Value) -> None:
    """Append the encoding of ``value`` to ``out``.

    On EncodeError ``out`` may hold a partial encoding; callers that share
    a buffer must discard it.
    """
    _encode_into(out, value, 0)


def _encode_into(out: bytearray, value: Value, depth: int) -> None:
    if depth > MAX_DEPTH:
        raise EncodeError(f"value nested deeper than {MAX_DEPTH} levels")

    if value is None:
        out.append(TypeKind.NIL)

    # bool before int: bool is an int subclass
    elif isinstance(value, bool):
        out.append(TypeKind.BOOL)
        out.append(1 if value else 0)

    elif isinstance(value, int):
        if not INT32_MIN <= value <= INT32_MAX:
            raise EncodeError(f"integer out of int32 range: {value}")
        out.append(TypeKind.INT)
        out += _I32.pack(value)

    elif isinstance(value, str):
        out.append(TypeKind.STRING)
        _write_sized(out, _utf8(value))

    # StringList before list: it is a list subclass
    elif isinstance(value, StringList):
        block = bytearray()
        for item in value:
            if not isinstance(item, str):
                raise EncodeError(f"StringList item is not a string: {type(item).__name__}")
            _write_sized(block, _utf8(item))
        out.append(TypeKind.STRING_LIST)
        _write_sized(out, block)

    elif isinstance(value, (bytes, bytearray, memoryview)):
        out.append(TypeKind.BYTES)
        _write_sized(out, bytes(value))

    elif isinstance(value, (list, tuple)):
        out.append(TypeKind.LIST)
        out += _U32.pack(len(value))
        for item in value:
            _encode_into(out, item, depth + 1)

    elif isinstance(value, dict):
        for key in value:
            if not isinstance(key, str):
                raise EncodeError(f"map key is not a string: {key!r}")
        # Code point order equals UTF-8 byte order
        keys = sorted(value)
        out.append(TypeKind.MAP)
        out += _U32.pack(len(keys))
        for key in keys:
            _write_sized(out, _utf8(key))
            _encode_into(out, value[key], depth + 1)

    else:
        raise EncodeError(f"cannot encode value of type {type(value).__name__}")


def _utf8(text: str) -> bytes:
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodeError(f"string is not valid UTF-8: {e}") from e


def _write_sized(out: bytearray, data: bytes | bytearray) -> None:
    if len(data) > UINT32_MAX:
        raise EncodeError(f"length {len(data)} does not fit in u32")
    out += _U32.pack(len(data))
    out += data


# =============================================================================
# Decoding
# =============================================================================


class _Cursor:
    """Bounds-checked reader over a byte buffer."""

    __slots__ = ("_data", "_pos")

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, size: int) -> memoryview:
        if size > self.remaining:
            raise DecodeError(f"unexpected end of data: wanted {size} bytes, have {self.remaining}")
        chunk = self._data[self._pos : self._pos + size]
        self._pos += size
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return _U32.unpack(self.take(4))[0]

    def i32(self) -> int:
        return _I32.unpack(self.take(4))[0]

    def sized(self) -> memoryview:
        return self.take(self.u32())


def decode_value(data: bytes | bytearray | memoryview) -> Value:
    """Decode exactly one value occupying all of ``data``.

    Raises:
        DecodeError: On unknown tags, truncated input or trailing bytes.
    """
    cursor = _Cursor(data)
    value = _decode(cursor, 0)
    if cursor.remaining:
        raise DecodeError(f"{cursor.remaining} trailing bytes after value")
    return value


def _decode(cursor: _Cursor, depth: int) -> Value:
    if depth > MAX_DEPTH:
        raise DecodeError(f"value nested deeper than {MAX_DEPTH} levels")

    tag = cursor.u8()

    if tag == TypeKind.NIL:
        return None

    if tag == TypeKind.BOOL:
        return cursor.u8() != 0

    if tag == TypeKind.INT:
        return cursor.i32()

    if tag == TypeKind.STRING:
        return _text(cursor.sized())

    if tag == TypeKind.STRING_LIST:
        block = _Cursor(cursor.sized())
        items = StringList()
        while block.remaining:
            items.append(_text(block.sized()))
        return items

    if tag == TypeKind.BYTES:
        return bytes(cursor.sized())

    if tag == TypeKind.LIST:
        count = cursor.u32()
        # Every element takes at least its tag byte
        if count > cursor.remaining:
            raise DecodeError(f"list count {count} exceeds remaining data")
        return [_decode(cursor, depth + 1) for _ in range(count)]

    if tag == TypeKind.MAP:
        count = cursor.u32()
        # Every entry takes at least a key length and a tag byte
        if count * 5 > cursor.remaining:
            raise DecodeError(f"map count {count} exceeds remaining data")
        result: dict[str, Value] = {}
        for _ in range(count):
            key = _text(cursor.sized())
            result[key] = _decode(cursor, depth + 1)
        return result

    raise DecodeError(f"unknown type tag: {tag}")


def _text(data: memoryview) -> str:
    try:
        return str(data, "utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"invalid UTF-8 in string: {e}") from e
