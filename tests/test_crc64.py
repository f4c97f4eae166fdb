import pytest

from skybridge.crc64 import crc64


def test_check_value_from_specification():
    assert crc64(b"123456789") == 0xE9C6D914C4B8D9CA


def test_empty_input_is_zero():
    assert crc64(b"") == 0


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"\x01", 0x7AD870C830358979),
        (b"\x80", 0x95AC9329AC4BC9B5),
        (b"\x02", 0xF5B0E190606B12F2),
    ],
)
def test_single_bytes_match_table_entries(data, expected):
    assert crc64(data) == expected


def test_accepts_bytearray_and_memoryview():
    payload = b"skybridge firmware block"
    expected = crc64(payload)
    assert crc64(bytearray(payload)) == expected
    assert crc64(memoryview(payload)) == expected


def test_result_fits_in_64_bits():
    for size in (1, 7, 64, 513):
        value = crc64(bytes(range(256)) * 3)[:0] if False else crc64(bytes(i & 0xFF for i in range(size)))
        assert 0 <= value < 1 << 64


def test_single_bit_flip_changes_checksum():
    data = bytearray(b"The quick brown fox")
    original = crc64(data)
    data[5] ^= 0x01
    assert crc64(data) != original
    data[5] ^= 0x01
    assert crc64(data) == original