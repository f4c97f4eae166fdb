"""CRC-64 with the "Jones" coefficients, reflected, initial value and final XOR of zero."""

from __future__ import annotations

__all__ = ["crc64", "POLY", "POLY_REFLECTED"]

POLY = 0xAD93D23594C935A9
POLY_REFLECTED = 0x95AC9329AC4BC9B5
_MASK64 = 0xFFFFFFFFFFFFFFFF


def _make_table() -> tuple[int, ...]:
    table = []
    for value in range(256):
        crc = value
        for _ in range(8):
            crc = (crc >> 1) ^ POLY_REFLECTED if crc & 1 else crc >> 1
        table.append(crc & _MASK64)
    return tuple(table)


_TABLE = _make_table()


def crc64(data: bytes | bytearray | memoryview) -> int:
    """Return the CRC-64/Jones of ``data``; ``b"123456789"`` gives 0xE9C6D914C4B8D9CA."""
    crc = 0
    for byte in bytes(data):
        crc = _TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc