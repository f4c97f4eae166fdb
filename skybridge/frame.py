"""Framing for the serial link between the bridge and its host controller.

Wire layout (multi-byte fields little-endian)::

    | magic | channel | length | data     | crc16 |
    | 1     | 1       | 2      | {length} | 2     |
    | 0xaa  | 0..255  | 0..65535          |       |

The CRC-16 (XMODEM) covers channel, length and data.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from skybridge.crc import crc16

__all__ = [
    "Channel",
    "FrameError",
    "Frame",
    "build_frame",
    "frame_length",
    "verify_frame",
    "parse_frame",
    "MAGIC",
    "HEAD_SIZE",
    "CRC_SIZE",
    "BASE_SIZE",
    "MAX_PAYLOAD",
    "CHANNEL_COUNT",
]

MAGIC = 0xAA
MAGIC_SIZE = 1
CHANNEL_SIZE = 1
LENGTH_SIZE = 2
CRC_SIZE = 2
HEAD_SIZE = MAGIC_SIZE + CHANNEL_SIZE + LENGTH_SIZE
BASE_SIZE = HEAD_SIZE + CRC_SIZE
MAX_PAYLOAD = 0xFFFF

_HEAD = struct.Struct("<BBH")
_CRC = struct.Struct("<H")


class Channel(IntEnum):
    """Forwarding channel carried in a frame."""

    ESP = 0
    BLE = 1
    BT = 2
    WIFI = 3
    ETH = 4
    ACK = 0xFF


CHANNEL_COUNT = 5


class FrameError(ValueError):
    """Raised when bytes do not form a valid frame."""


@dataclass(frozen=True)
class Frame:
    """A decoded frame: the channel number and its payload."""

    channel: int
    payload: bytes

    def encode(self) -> bytes:
        """Return the frame's wire bytes."""
        return build_frame(self.channel, self.payload)


def build_frame(channel: int, payload: bytes | bytearray | memoryview) -> bytes:
    """Wrap ``payload`` for ``channel`` with header and CRC."""
    payload = bytes(payload)
    if not 0 <= int(channel) <= 0xFF:
        raise ValueError(f"channel out of range: {channel}")
    if len(payload) > MAX_PAYLOAD:
        raise ValueError(f"payload too large: {len(payload)} bytes")
    head = _HEAD.pack(MAGIC, int(channel), len(payload))
    body = head + payload
    return body + _CRC.pack(crc16(body[MAGIC_SIZE:]))


def _declared_length(frame: bytes) -> int:
    if len(frame) < HEAD_SIZE:
        raise FrameError(f"frame too short: {len(frame)} bytes")
    magic, _channel, length = _HEAD.unpack_from(frame)
    if magic != MAGIC:
        raise FrameError(f"bad magic 0x{magic:02x}")
    return length


def frame_length(frame: bytes | bytearray | memoryview) -> int:
    """Return the total frame size declared by the header of ``frame``."""
    return _declared_length(bytes(frame)) + BASE_SIZE


def _check(frame: bytes) -> None:
    if len(frame) < BASE_SIZE:
        raise FrameError(f"frame too short: {len(frame)} bytes")
    length = _declared_length(frame)
    if length != len(frame) - BASE_SIZE:
        raise FrameError(
            f"length field {length} does not match frame size {len(frame)}"
        )
    computed = crc16(frame[MAGIC_SIZE:-CRC_SIZE])
    (received,) = _CRC.unpack_from(frame, len(frame) - CRC_SIZE)
    if computed != received:
        raise FrameError(f"crc mismatch 0x{received:04x} != 0x{computed:04x}")


def verify_frame(frame: bytes | bytearray | memoryview) -> bool:
    """Return True if ``frame`` is exactly one well-formed frame with a good CRC."""
    try:
        _check(bytes(frame))
    except FrameError:
        return False
    return True


def parse_frame(frame: bytes | bytearray | memoryview) -> Frame:
    """Decode ``frame``, raising FrameError if it is malformed."""
    frame = bytes(frame)
    _check(frame)
    channel = frame[MAGIC_SIZE]
    return Frame(channel=channel, payload=frame[HEAD_SIZE:-CRC_SIZE])