"""Protobuf wire encoding for the server's bulk ``ImportRequest`` message.

Only the fields the ingest path sends are encoded::

    message ImportRequest {
        string Index = 1;
        string Field = 2;
        uint64 Shard = 3;
        repeated uint64 RowIDs = 4;    // packed
        repeated uint64 ColumnIDs = 5; // packed
    }
"""

from __future__ import annotations

from collections.abc import Iterable

SHARD_WIDTH = 1 << 20
PROTOBUF_CONTENT_TYPE = "application/x-protobuf"

_WIRE_VARINT = 0
_WIRE_LENGTH_DELIMITED = 2
_MAX_UINT64 = (1 << 64) - 1


def encode_varint(value: int) -> bytes:
    if value < 0 or value > _MAX_UINT64:
        raise ValueError(f"varint out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(field_number: int, wire_type: int) -> bytes:
    return encode_varint((field_number << 3) | wire_type)


def _length_delimited(field_number: int, payload: bytes) -> bytes:
    return _key(field_number, _WIRE_LENGTH_DELIMITED) + encode_varint(len(payload)) + payload


def _packed_uint64(field_number: int, values: Iterable[int]) -> bytes:
    payload = b"".join(encode_varint(int(value)) for value in values)
    if not payload:
        return b""
    return _length_delimited(field_number, payload)


def encode_import_request(index: str, field: str, shard: int, rows: list[int], columns: list[int]) -> bytes:
    if len(rows) != len(columns):
        raise ValueError("rows and columns must have the same length")
    parts = [
        _length_delimited(1, index.encode("utf-8")),
        _length_delimited(2, field.encode("utf-8")),
    ]
    if shard:
        parts.append(_key(3, _WIRE_VARINT) + encode_varint(shard))
    parts.append(_packed_uint64(4, rows))
    parts.append(_packed_uint64(5, columns))
    return b"".join(parts)
