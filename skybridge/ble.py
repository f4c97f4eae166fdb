"""Advertising payloads and a notification queue for the bridge's BLE side."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass

__all__ = [
    "AdvertisingError",
    "NotifyQueue",
    "build_adv_data",
    "build_scan_response",
    "split_notifications",
    "ADV_PDU_LEN",
    "AD_TYPE_FLAG",
    "AD_TYPE_NAME_COMPLETE",
    "AD_TYPE_MANUFACTURER",
    "ADV_FLAGS",
    "DEFAULT_MTU",
    "ATT_HEADER_SIZE",
    "DEFAULT_DEVICE_NAME",
    "GATTS_PDU_MAX",
]

logger = logging.getLogger(__name__)

ADV_PDU_LEN = 31
AD_TYPE_FLAG = 0x01
AD_TYPE_NAME_COMPLETE = 0x09
AD_TYPE_MANUFACTURER = 0xFF
ADV_FLAGS = 0x06
BD_ADDR_LEN = 6
SCAN_RSP_HEAD = bytes([ADV_PDU_LEN - 1, AD_TYPE_MANUFACTURER, 0xFF, 0xFF])
SCAN_RSP_DATA_MAX = ADV_PDU_LEN - len(SCAN_RSP_HEAD)

DEFAULT_MTU = 23
ATT_HEADER_SIZE = 3
DEFAULT_DEVICE_NAME = "SkyBridge"
GATTS_PDU_MAX = 244
NOTIFY_QUEUE_SIZE = 256


class AdvertisingError(ValueError):
    """Raised when advertising data cannot be built from the given values."""


def _as_bytes(value: str | bytes | bytearray | memoryview) -> bytes:
    return value.encode() if isinstance(value, str) else bytes(value)


def build_adv_data(
    name: str | bytes | bytearray | memoryview,
    address: bytes | bytearray | memoryview,
) -> bytes:
    """Return the raw advertising data: flags, complete name and device address.

    Elements that would not fit in the 31-byte PDU are left out.
    """
    name = _as_bytes(name)
    address = bytes(address)
    if len(address) != BD_ADDR_LEN:
        raise AdvertisingError(
            f"device address must be {BD_ADDR_LEN} bytes, got {len(address)}"
        )

    adv = bytearray()
    for tag, value in (
        (AD_TYPE_FLAG, bytes([ADV_FLAGS])),
        (AD_TYPE_NAME_COMPLETE, name),
        (AD_TYPE_MANUFACTURER, address),
    ):
        if len(adv) + len(value) + 2 <= ADV_PDU_LEN:
            adv += bytes([len(value) + 1, tag]) + value
        else:
            logger.error(
                "adv data overflow tag=%d len=%d used=%d", tag, len(value), len(adv)
            )
    return bytes(adv)


def build_scan_response(data: bytes | bytearray | memoryview = b"") -> bytes:
    """Return the 31-byte scan response carrying up to 27 bytes of user data."""
    data = bytes(data)[:SCAN_RSP_DATA_MAX]
    return (SCAN_RSP_HEAD + data).ljust(ADV_PDU_LEN, b"\x00")


def split_notifications(
    data: bytes | bytearray | memoryview, mtu: int = DEFAULT_MTU
) -> Iterator[bytes]:
    """Yield ``data`` in pieces that each fit one notification at ``mtu``."""
    size = mtu - ATT_HEADER_SIZE
    if size <= 0:
        raise ValueError(f"mtu too small: {mtu}")
    data = bytes(data)
    for start in range(0, len(data), size):
        yield data[start : start + size]


@dataclass(frozen=True)
class _Notification:
    handle: int
    data: bytes


class NotifyQueue:
    """Buffers notifications and hands them to ``send(handle, data)`` in order.

    While the link is congested nothing is sent; while it is disconnected
    queued notifications are dropped as they are drained.
    """

    def __init__(
        self,
        send: Callable[[int, bytes], object],
        maxsize: int = NOTIFY_QUEUE_SIZE,
    ) -> None:
        if maxsize <= 0:
            raise ValueError(f"maxsize must be positive: {maxsize}")
        self._send = send
        self.maxsize = maxsize
        self.connected = True
        self._congested = False
        self._pending: deque[_Notification] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def congested(self) -> bool:
        """Whether the link currently refuses more notifications."""
        return self._congested

    def set_congested(self, congested: bool) -> None:
        """Record the link's congestion state."""
        self._congested = bool(congested)

    def push(
        self,
        handle: int,
        data: bytes | bytearray | memoryview,
        mtu: int = DEFAULT_MTU,
    ) -> int:
        """Queue ``data`` for ``handle`` split by ``mtu``; return the pieces queued.

        Queuing stops at the first piece that finds the queue full.
        """
        queued = 0
        with self._lock:
            for chunk in split_notifications(data, mtu):
                if len(self._pending) >= self.maxsize:
                    logger.error("notify queue full")
                    break
                self._pending.append(_Notification(handle, chunk))
                queued += 1
        return queued

    def drain(self) -> int:
        """Send queued notifications until the queue empties or the link congests.

        Returns the number of notifications handed to ``send``.
        """
        sent = 0
        while not self._congested:
            with self._lock:
                if not self._pending:
                    break
                item = self._pending.popleft()
            if not self.connected:
                continue
            try:
                self._send(item.handle, item.data)
            except Exception:
                logger.exception("notify error")
                continue
            sent += 1
        if self._congested and len(self):
            logger.warning("notify busy")
        return sent