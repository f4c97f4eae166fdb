"""Dispatch of frames arriving from the host controller by channel."""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable
from enum import IntEnum
from typing import Protocol

from skybridge.frame import Channel, build_frame

__all__ = [
    "AppId",
    "CharUuid",
    "EspCommand",
    "Bridge",
    "DEVICE_NAME_MAX",
    "USER_DATA_MAX",
    "DEFAULT_DEVICE_NAME",
]

logger = logging.getLogger(__name__)

DEVICE_NAME_MAX = 20
USER_DATA_MAX = 27
DEFAULT_DEVICE_NAME = b"ELITE_UNKNOWN"


class AppId(IntEnum):
    """GATT application identifiers of the bridge's services."""

    CTRL = 0x0001
    TRACE = 0x0002
    DFU = 0x0003
    OTA = 0x0004


class CharUuid(IntEnum):
    """16-bit UUIDs of the bridge's GATT characteristics."""

    CTRL_VERSION = 0x3A11
    CTRL_NAME = 0x3A12
    CTRL_FIND = 0x3A13
    CTRL_MISC = 0x3A14
    TRACE_LOG = 0x3A21
    TRACE_SHELL = 0x3A22
    TRACE_LOCAL = 0x3A23
    OTA_VERSION = 0x3AF1
    OTA_DATA = 0x3AF2
    OTA_CTRL = 0x3AF3


class EspCommand(IntEnum):
    """Commands the host controller sends to the bridge itself."""

    STATUS = 0x00
    POWEROFF = 0x01
    REBOOT = 0x02
    SLEEP = 0x03
    SET_NVS = 0x10
    GET_NVS = 0x11
    BLE_GET_CONNECT = 0x40
    BLE_GET_MTU = 0x41
    BLE_SET_DEV_NAME = 0x50
    BLE_SET_USER_DATA = 0x51
    BLE_SET_PPCP = 0x52


class _Ble(Protocol):
    connected: bool
    mtu: int

    def set_adv_data(self, name: bytes, data: bytes) -> object: ...

    def set_ppcp(self, interval_min: int, interval_max: int, latency: int, timeout: int) -> object: ...

    def notify(self, uuid: CharUuid, data: bytes) -> object: ...


_NOTIFY_UUIDS = frozenset(
    {CharUuid.CTRL_NAME, CharUuid.CTRL_FIND, CharUuid.TRACE_LOG, CharUuid.TRACE_SHELL}
)
_PPCP = struct.Struct("<HHHH")


class Bridge:
    """Handles frames for the ESP and BLE channels.

    ``ble`` exposes ``connected``, ``mtu``, ``set_adv_data(name, data)``,
    ``set_ppcp(min, max, latency, timeout)`` and ``notify(uuid, data)``;
    ``send`` writes a frame to the host; ``restart`` reboots the bridge.
    """

    def __init__(self, ble: _Ble, send: Callable[[bytes], object], restart: Callable[[], object]) -> None:
        self.ble = ble
        self._send = send
        self._restart = restart
        self.device_name = DEFAULT_DEVICE_NAME
        self._user_data = bytearray(USER_DATA_MAX)
        self._esp_handlers: dict[EspCommand, Callable[[bytes], None]] = {
            EspCommand.STATUS: self._status,
            EspCommand.REBOOT: self._reboot,
            EspCommand.BLE_GET_CONNECT: self._get_connect,
            EspCommand.BLE_GET_MTU: self._get_mtu,
            EspCommand.BLE_SET_DEV_NAME: self._set_dev_name,
            EspCommand.BLE_SET_USER_DATA: self._set_user_data,
            EspCommand.BLE_SET_PPCP: self._set_ppcp,
        }

    @property
    def user_data(self) -> bytes:
        """The user data advertised in the scan response."""
        return bytes(self._user_data)

    def _ack(self, cmd: EspCommand, data: bytes = b"") -> None:
        self._send(build_frame(Channel.ESP, bytes([cmd]) + data))

    def _ack_bool(self, cmd: EspCommand, status: bool) -> None:
        self._ack(cmd, b"\x01" if status else b"\x00")

    def _status(self, data: bytes) -> None:
        self._ack_bool(EspCommand.STATUS, True)

    def _reboot(self, data: bytes) -> None:
        self._restart()
        self._ack_bool(EspCommand.REBOOT, True)

    def _get_connect(self, data: bytes) -> None:
        self._ack_bool(EspCommand.BLE_GET_CONNECT, bool(self.ble.connected))

    def _get_mtu(self, data: bytes) -> None:
        self._ack(EspCommand.BLE_GET_MTU, struct.pack("<H", self.ble.mtu))

    def _set_dev_name(self, data: bytes) -> None:
        self.device_name = data[:DEVICE_NAME_MAX].split(b"\x00", 1)[0]
        self.ble.set_adv_data(self.device_name, self.user_data)
        self._ack_bool(EspCommand.BLE_SET_DEV_NAME, True)

    def _set_user_data(self, data: bytes) -> None:
        chunk = data[:USER_DATA_MAX]
        self._user_data[: len(chunk)] = chunk
        self.ble.set_adv_data(self.device_name, self.user_data)
        self._ack_bool(EspCommand.BLE_SET_USER_DATA, True)

    def _set_ppcp(self, data: bytes) -> None:
        if len(data) != _PPCP.size:
            self._ack_bool(EspCommand.BLE_SET_PPCP, False)
            return
        self.ble.set_ppcp(*_PPCP.unpack(data))
        self._ack_bool(EspCommand.BLE_SET_PPCP, True)

    def handle_esp(self, data: bytes | bytearray | memoryview) -> None:
        """Carry out a command addressed to the bridge and acknowledge it."""
        data = bytes(data)
        if not data:
            logger.warning("empty esp command")
            return
        try:
            cmd = EspCommand(data[0])
        except ValueError:
            logger.warning("unknown esp command 0x%02x", data[0])
            return
        handler = self._esp_handlers.get(cmd)
        if handler is not None:
            handler(data[1:])

    def handle_ble(self, data: bytes | bytearray | memoryview) -> None:
        """Forward a payload prefixed with a characteristic UUID as a notification."""
        data = bytes(data)
        if len(data) < 2:
            return
        (uuid,) = struct.unpack_from("<H", data)
        body = data[2:]
        if uuid not in _NOTIFY_UUIDS:
            logger.error("unknown uuid 0x%04x", uuid)
            return
        uuid = CharUuid(uuid)
        if uuid in (CharUuid.CTRL_NAME, CharUuid.CTRL_FIND):
            logger.debug("%s-tx %s", uuid.name.lower(), body.hex())
        self.ble.notify(uuid, body)

    def forward(self, channel: int, data: bytes | bytearray | memoryview) -> None:
        """Route a frame payload to the handler for ``channel``; others are ignored."""
        if channel == Channel.ESP:
            self.handle_esp(data)
        elif channel == Channel.BLE:
            self.handle_ble(data)