"""Table-driven CRC-8, CRC-16 (XMODEM) and CRC-32 (IEEE) checksums and table helpers."""

from __future__ import annotations

import binascii
import zlib
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]

_MASK8 = 0xFF
_MASK16 = 0xFFFF
_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF


def crc8_poly_lsb(poly: int, value: int) -> int:
    """Table entry for ``value`` of an 8-bit reflected (LSB-first) CRC."""
    crc = value & _MASK8
    poly &= _MASK8
    for _ in range(8):
        crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
    return crc & _MASK8


def crc8_poly_msb(poly: int, value: int) -> int:
    """Table entry for ``value`` of an 8-bit MSB-first CRC."""
    crc = value & _MASK8
    poly &= _MASK8
    for _ in range(8):
        crc = ((crc << 1) ^ poly if crc & 0x80 else crc << 1) & _MASK8
    return crc


def crc16_poly_lsb(poly: int, value: int) -> int:
    """Sixteen LSB-first rounds over the low byte of ``value``."""
    crc = value & 0xFF
    poly &= _MASK16
    for _ in range(16):
        crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
    return crc & _MASK16


def crc16_poly_msb(poly: int, value: int) -> int:
    """Sixteen MSB-first rounds over the low byte of ``value``."""
    crc = value & 0xFF
    poly &= _MASK16
    for _ in range(16):
        crc = ((crc << 1) ^ poly if crc & 0x8000 else crc << 1) & _MASK16
    return crc


def crc32_poly(poly: int, value: int) -> int:
    """Table entry for ``value`` of a 32-bit reflected CRC."""
    crc = value & 0xFF
    poly &= _MASK32
    for _ in range(8):
        crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
    return crc & _MASK32


def crc64_poly(poly: int, value: int) -> int:
    """Table entry for ``value`` of a 64-bit reflected CRC."""
    crc = value & 0xFF
    poly &= _MASK64
    for _ in range(8):
        crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
    return crc & _MASK64


# The LSB-first CRC-8 table as the firmware ships it: 248 entries, the last
# eight slots left at zero.
_CRC8_LSB_TABLE: tuple[int, ...] = (
    0x00, 0x04, 0x08, 0x0C, 0x10, 0x14, 0x18, 0x1C,
    0x20, 0x24, 0x28, 0x2C, 0x30, 0x34, 0x38, 0x3C,
    0x23, 0x27, 0x2B, 0x2F, 0x33, 0x37, 0x3B, 0x3F,
    0x03, 0x07, 0x0B, 0x0F, 0x13, 0x17, 0x1B, 0x1F,
    0x25, 0x21, 0x2D, 0x29, 0x35, 0x31, 0x3D, 0x39,
    0x05, 0x01, 0x0D, 0x09, 0x15, 0x11, 0x1D, 0x19,
    0x06, 0x02, 0x0E, 0x0A, 0x16, 0x12, 0x1E, 0x1A,
    0x26, 0x22, 0x2E, 0x2A, 0x36, 0x32, 0x3E, 0x3A,
    0x29, 0x2D, 0x21, 0x25, 0x39, 0x3D, 0x31, 0x35,
    0x09, 0x0D, 0x01, 0x05, 0x19, 0x1D, 0x11, 0x15,
    0x0A, 0x0E, 0x02, 0x06, 0x1A, 0x1E, 0x12, 0x16,
    0x2A, 0x2E, 0x22, 0x26, 0x3A, 0x3E, 0x32, 0x36,
    0x0C, 0x08, 0x04, 0x00, 0x1C, 0x18, 0x14, 0x10,
    0x2C, 0x28, 0x24, 0x20, 0x3C, 0x38, 0x34, 0x30,
    0x2F, 0x2B, 0x27, 0x23, 0x3F, 0x3B, 0x37, 0x33,
    0x0F, 0x0B, 0x07, 0x03, 0x1F, 0x1B, 0x17, 0x13,
    0x31, 0x35, 0x39, 0x3D, 0x21, 0x25, 0x29, 0x2D,
    0x11, 0x15, 0x19, 0x1D, 0x01, 0x05, 0x09, 0x0D,
    0x12, 0x16, 0x1A, 0x1E, 0x02, 0x06, 0x0A, 0x0E,
    0x32, 0x36, 0x3A, 0x3E, 0x22, 0x26, 0x2A, 0x2E,
    0x14, 0x10, 0x1C, 0x18, 0x04, 0x00, 0x0C, 0x08,
    0x34, 0x30, 0x3C, 0x38, 0x24, 0x20, 0x2C, 0x28,
    0x37, 0x33, 0x3F, 0x3B, 0x27, 0x23, 0x2F, 0x2B,
    0x17, 0x13, 0x1F, 0x1B, 0x07, 0x03, 0x0F, 0x0B,
    0x18, 0x1C, 0x10, 0x14, 0x08, 0x0C, 0x00, 0x04,
    0x38, 0x3C, 0x30, 0x34, 0x28, 0x2C, 0x20, 0x24,
    0x3B, 0x3F, 0x33, 0x37, 0x2B, 0x2F, 0x23, 0x27,
    0x1B, 0x1F, 0x13, 0x17, 0x0B, 0x0F, 0x03, 0x07,
    0x3D, 0x39, 0x35, 0x31, 0x2D, 0x29, 0x25, 0x21,
    0x1D, 0x19, 0x15, 0x11, 0x0D, 0x09, 0x05, 0x01,
    0x1E, 0x1A, 0x16, 0x12, 0x0E, 0x0A, 0x06, 0x02,
) + (0,) * 8

_CRC8_MSB_TABLE: tuple[int, ...] = tuple(crc8_poly_msb(0x31, i) for i in range(256))


def crc8_lsb(data: BytesLike) -> int:
    """CRC-8 over ``data`` using the LSB-first table."""
    crc = 0
    for byte in bytes(data):
        crc = _CRC8_LSB_TABLE[crc ^ byte]
    return crc


def crc8_msb(data: BytesLike) -> int:
    """CRC-8 (poly 0x31, init 0, MSB-first) over ``data``."""
    crc = 0
    for byte in bytes(data):
        crc = _CRC8_MSB_TABLE[crc ^ byte]
    return crc


def crc16(data: BytesLike) -> int:
    """CRC-16/XMODEM (poly 0x1021, init 0) over ``data``."""
    return binascii.crc_hqx(bytes(data), 0)


def crc32(data: BytesLike) -> int:
    """IEEE CRC-32 over ``data``."""
    return zlib.crc32(bytes(data)) & _MASK32


def crc32_append(crc: int, data: BytesLike) -> int:
    """Feed ``data`` into a raw CRC-32 register without initial or final inversion."""
    return (zlib.crc32(bytes(data), (crc & _MASK32) ^ _MASK32) ^ _MASK32) & _MASK32