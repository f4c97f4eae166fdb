"""Relays writes on the control and trace characteristics to the host controller."""

from __future__ import annotations

import logging
import struct
from typing import Protocol

from skybridge.channels import CharUuid
from skybridge.frame import Channel, build_frame

__all__ = ["ProfileBridge"]

logger = logging.getLogger(__name__)


class _Link(Protocol):
    def send(self, data: bytes) -> object: ...

    def send_inlock(self, data: bytes) -> object: ...


def _ble_frame(uuid: CharUuid, data: bytes | bytearray | memoryview) -> bytes:
    return build_frame(Channel.BLE, struct.pack("<H", uuid) + bytes(data))


class ProfileBridge:
    """Wraps characteristic writes in BLE-channel frames and sends them on ``link``."""

    def __init__(self, link: _Link) -> None:
        self.link = link

    def name_write(self, data: bytes | bytearray | memoryview) -> None:
        """Accept a write to the name characteristic; it is only logged."""
        logger.info("name-rx %s", bytes(data).hex())

    def find_write(self, data: bytes | bytearray | memoryview) -> None:
        """Relay a write to the find characteristic."""
        logger.info("find-rx %s", bytes(data).hex())
        self.link.send(_ble_frame(CharUuid.CTRL_FIND, data))

    def misc_write(self, data: bytes | bytearray | memoryview) -> None:
        """Relay a write to the misc characteristic, even while sending is locked."""
        logger.info("misc-rx %s", bytes(data).hex())
        self.link.send_inlock(_ble_frame(CharUuid.CTRL_MISC, data))

    def shell_write(self, data: bytes | bytearray | memoryview) -> None:
        """Relay a write to the shell characteristic."""
        self.link.send(_ble_frame(CharUuid.TRACE_SHELL, data))

    def set_reboot(self, trap_boot: bool) -> None:
        """Ask the host controller to reboot, optionally staying in its bootloader."""
        self.misc_write(bytes([0x01, 1 if trap_boot else 0]))

    def shell_send(self, cmd: str) -> None:
        """Send a shell command line to the host controller."""
        self.shell_write(cmd.encode())