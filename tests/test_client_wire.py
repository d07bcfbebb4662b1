import pytest

from dxbench.client.wire import encode_import_request, encode_varint


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, b"\x00"),
        (1, b"\x01"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
        ((1 << 64) - 1, b"\xff" * 9 + b"\x01"),
    ],
)
def test_encode_varint(value, expected):
    assert encode_varint(value) == expected


def test_encode_varint_rejects_out_of_range():
    with pytest.raises(ValueError):
        encode_varint(-1)
    with pytest.raises(ValueError):
        encode_varint(1 << 64)


def test_import_request_layout():
    payload = encode_import_request("i", "f", 2, [1, 300], [5, 6])
    assert payload == (
        b"\x0a\x01i"  # Index
        b"\x12\x01f"  # Field
        b"\x18\x02"  # Shard
        b"\x22\x03\x01\xac\x02"  # RowIDs, packed
        b"\x2a\x02\x05\x06"  # ColumnIDs, packed
    )


def test_import_request_omits_zero_shard():
    payload = encode_import_request("i", "f", 0, [1], [2])
    assert payload == b"\x0a\x01i\x12\x01f\x22\x01\x01\x2a\x01\x02"


def test_import_request_requires_matching_lengths():
    with pytest.raises(ValueError, match="same length"):
        encode_import_request("i", "f", 0, [1, 2], [3])
