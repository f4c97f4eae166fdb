"""Request/response packets for the host controller's bootloader.

Packet layout (multi-byte fields little-endian)::

    | head | opcode | length | param | crc32 |
    | 1    | 1      | 2      | n     | 4     |

The CRC-32 (IEEE) covers every byte before it.
"""

from __future__ import annotations

import logging
import struct
import zlib
from enum import IntEnum
from typing import Protocol

__all__ = [
    "Opcode",
    "Inquiry",
    "DfuType",
    "DfuError",
    "DfuClient",
    "build_packet",
    "parse_packet",
    "PACKET_HEADER",
    "OVERHEAD_SIZE",
]

logger = logging.getLogger(__name__)

PACKET_HEADER = 0xAA
OVERHEAD_SIZE = 1 + 1 + 2 + 4
MAX_PARAM = 0xFFFF

_HEAD = struct.Struct("<BBH")
_CRC = struct.Struct("<I")


class Opcode(IntEnum):
    """Bootloader command codes."""

    NONE = 0x00
    INQUIRY = 0x10
    BOOT = 0x11
    UNLOCK = 0x1A
    RESET = 0x1F
    ERASE = 0x20
    READ = 0x21
    WRITE = 0x22
    VERIFY = 0x23
    END = 0x24


class Inquiry(IntEnum):
    """Sub-commands of an inquiry request."""

    VERSION = 0
    MTU_SIZE = 1


class DfuType(IntEnum):
    """Firmware images the bootloader can be asked to flash."""

    NONE = 0
    APP = 1


class DfuError(Exception):
    """Raised when a bootloader exchange fails."""


class _Transport(Protocol):
    def flush(self) -> None: ...

    def send_inlock(self, data: bytes) -> object: ...

    def recv(self, length: int, timeout: float) -> bytes: ...


def build_packet(opcode: int, param: bytes | bytearray | memoryview = b"") -> bytes:
    """Return the wire bytes of a packet carrying ``param`` under ``opcode``."""
    param = bytes(param)
    if len(param) > MAX_PARAM:
        raise ValueError(f"parameter too large: {len(param)} bytes")
    body = _HEAD.pack(PACKET_HEADER, int(opcode), len(param)) + param
    return body + _CRC.pack(zlib.crc32(body))


def parse_packet(packet: bytes | bytearray | memoryview) -> tuple[int, bytes]:
    """Decode ``packet`` into ``(opcode, param)``, raising DfuError if malformed."""
    packet = bytes(packet)
    if len(packet) < OVERHEAD_SIZE:
        raise DfuError(f"packet length error {len(packet)}")
    header, opcode, length = _HEAD.unpack_from(packet)
    if header != PACKET_HEADER:
        raise DfuError(f"packet header error {header:02X}")
    if length + OVERHEAD_SIZE != len(packet):
        raise DfuError(f"packet length error {length} {len(packet)}")
    (received,) = _CRC.unpack_from(packet, len(packet) - _CRC.size)
    computed = zlib.crc32(packet[: -_CRC.size])
    if computed != received:
        raise DfuError(f"packet crc error {received:08X} {computed:08X}")
    return opcode, packet[_HEAD.size : -_CRC.size]


class DfuClient:
    """Speaks the bootloader protocol over a transport.

    The transport offers ``flush()``, ``send_inlock(data)`` and
    ``recv(length, timeout)``; timeouts are in seconds.
    """

    def __init__(self, transport: _Transport) -> None:
        self.transport = transport

    def request(
        self,
        opcode: int,
        payload: bytes | bytearray | memoryview = b"",
        response_length: int = 0,
        timeout: float = 1.0,
    ) -> bytes:
        """Send one request and return the parameter of the matching response."""
        packet = build_packet(opcode, payload)
        self.transport.flush()
        self.transport.send_inlock(packet)
        reply = self.transport.recv(OVERHEAD_SIZE + response_length, timeout)
        op, param = parse_packet(reply)
        if op != int(opcode):
            raise DfuError(f"response opcode 0x{op:02x} != 0x{int(opcode):02x}")
        if len(param) != response_length:
            raise DfuError(
                f"response length {len(param)} != expected {response_length}"
            )
        return param

    def get_bootloader_version(self) -> tuple[int, int]:
        """Return the bootloader's ``(major, minor)`` version."""
        reply = self.request(Opcode.INQUIRY, bytes([Inquiry.VERSION]), 2, 1.0)
        return reply[0], reply[1]

    def get_mtu_size(self) -> int:
        """Return the largest block the bootloader accepts in one write."""
        reply = self.request(Opcode.INQUIRY, bytes([Inquiry.MTU_SIZE]), 2, 1.0)
        (mtu,) = struct.unpack("<H", reply)
        return mtu

    def reboot_system(self) -> None:
        """Ask the bootloader to reset the controller."""
        self.request(Opcode.RESET, b"", 0, 1.0)

    def erase_flash(self, address: int, size: int) -> None:
        """Erase ``size`` bytes of flash starting at ``address``."""
        reply = self.request(
            Opcode.ERASE, struct.pack("<II", address, size), 1, 8.0
        )
        if reply[0] != 0:
            raise DfuError(f"erase at 0x{address:08x} failed, status {reply[0]}")

    def write_flash(self, address: int, data: bytes | bytearray | memoryview) -> None:
        """Write ``data`` to flash at ``address``."""
        data = bytes(data)
        payload = struct.pack("<II", address, len(data)) + data
        reply = self.request(Opcode.WRITE, payload, 1, 1.0)
        if reply[0] != 0:
            raise DfuError(f"write at 0x{address:08x} failed, status {reply[0]}")

    def verify_flash(self, address: int, size: int, crc: int) -> None:
        """Have the bootloader check the CRC-32 of a flash region."""
        reply = self.request(
            Opcode.VERIFY, struct.pack("<III", address, size, crc), 1, 3.0
        )
        if reply[0] != 0:
            raise DfuError(f"verify at 0x{address:08x} failed, status {reply[0]}")