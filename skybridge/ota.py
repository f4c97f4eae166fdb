"""Over-the-air update sessions driven through the OTA data and control characteristics.

A client starts a transfer with ``START`` (image type, size, CRC-32). The bridge
then asks for the image one packet at a time with ``DATA`` requests. Each
packet's CRC-16 (XMODEM) is checked, and the whole image's CRC-32 is checked
once the last packet is in. A final ``FINISH`` makes the image bootable.
Control writes apply a finished update: either a reboot of the bridge or a
flash of the staged controller firmware.
"""

from __future__ import annotations

import binascii
import logging
import struct
import threading
import zlib
from collections.abc import Callable, Mapping
from enum import IntEnum
from typing import Optional

from skybridge.dfu import HEADER_SIZE, MAGIC, Partition, PartitionKind, build_header
from skybridge.dfu_transfer import DfuType

__all__ = [
    "OtaType",
    "OtaCommand",
    "OtaStatus",
    "OtaStage",
    "OtaSession",
    "PACKET_SIZE",
    "OTA_TIMEOUT",
    "FINISH_DELAY",
]

logger = logging.getLogger(__name__)

PACKET_SIZE = 4096
OTA_TIMEOUT = 3.0
FINISH_DELAY = 1.0
MAX_RETRIES = 3

_START = struct.Struct("<BBII")
_DATA_HEAD = struct.Struct("<BIIH")
_REQUEST = struct.Struct("<BII")
_U32 = struct.Struct("<I")


class OtaType(IntEnum):
    """Kinds of image that can be sent."""

    ESP = 0
    FW_APP = 1


class OtaCommand(IntEnum):
    """Commands on the OTA data characteristic."""

    START = 0
    DATA = 1
    FINISH = 2


class OtaStatus(IntEnum):
    """Result codes reported back to the client."""

    OK = 0
    ERR_CMD = 1
    ERR_PARAM = 2
    ERR_LENGTH = 3
    ERR_CRC = 4
    ERR_TIMEOUT = 5
    ERR_ABORT = 6
    ERR_UNKNOWN = 0xFF


class OtaStage(IntEnum):
    """Where a session is in the transfer."""

    IDLE = 0
    START = 1
    DATA = 2
    FINISH = 3


class _CtrlCommand(IntEnum):
    APPLY_ESP = 0
    APPLY_FW = 1


def _crc16(data: bytes) -> int:
    return binascii.crc_hqx(data, 0)


class OtaSession:
    """State machine for one device's OTA characteristics.

    ``partitions`` maps an :class:`OtaType` to the partition receiving that
    image. ``notify_data`` and ``notify_ctrl`` send bytes to the client.
    ``apply_fw(mask)`` flashes the staged controller firmware selected by a
    DFU type mask and returns whether it succeeded. ``restart()`` reboots the
    bridge. ``timeout`` (seconds, or None to disable) bounds the wait for each
    client message; ``finish_delay`` is the pause before an applied reboot.
    """

    def __init__(
        self,
        partitions: Mapping[OtaType, Partition],
        notify_data: Callable[[bytes], object],
        notify_ctrl: Callable[[bytes], object],
        apply_fw: Callable[[int], object],
        restart: Callable[[], object],
    ) -> None:
        self.partitions = partitions
        self._notify_data = notify_data
        self._notify_ctrl = notify_ctrl
        self._apply_fw = apply_fw
        self._restart = restart
        self.timeout: Optional[float] = OTA_TIMEOUT
        self.finish_delay: float = FINISH_DELAY
        self.boot_partition: Optional[Partition] = None

        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._timer_gen = 0
        self._finish_timer: Optional[threading.Timer] = None

        self._stage = OtaStage.IDLE
        self._partition: Optional[Partition] = None
        self._package_size = 0
        self._package_crc = 0
        self._package_received = 0
        self._request_offset = 0
        self._request_size = 0
        self._packet = bytearray()
        self._packet_crc = 0
        self._retry = 0

    @property
    def stage(self) -> OtaStage:
        """The current stage of the transfer."""
        return self._stage

    # -- responses -------------------------------------------------------

    def _respond(self, cmd: int, status: OtaStatus) -> None:
        self._notify_data(bytes([int(cmd) & 0xFF, int(status)]))

    def _respond_ctrl(self, status: OtaStatus) -> None:
        self._notify_ctrl(bytes([int(status)]))

    def _request(self, offset: int, size: int) -> None:
        self._request_offset = offset
        self._request_size = size
        self._packet = bytearray()
        self._notify_data(_REQUEST.pack(OtaCommand.DATA, offset, size))

    # -- timers ----------------------------------------------------------

    def _disarm(self) -> None:
        self._timer_gen += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self) -> None:
        self._disarm()
        if self.timeout is None:
            return
        timer = threading.Timer(self.timeout, self._expire, args=(self._timer_gen,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _expire(self, gen: int) -> None:
        with self._lock:
            if gen != self._timer_gen:
                return
            self._timer = None
            self.on_timeout()

    def _terminate(self) -> None:
        logger.warning("ota terminal")
        self._disarm()
        self._stage = OtaStage.IDLE
        if self._partition is not None and self._partition.kind == PartitionKind.APP:
            logger.info("ota aborted on %s", self._partition.label)

    # -- data characteristic ---------------------------------------------

    def handle_data(self, data: bytes | bytearray | memoryview) -> None:
        """Process one write on the OTA data characteristic."""
        data = bytes(data)
        with self._lock:
            if self._stage == OtaStage.IDLE:
                self._stage_idle(data)
            elif self._stage == OtaStage.DATA:
                self._stage_data(data)
            elif self._stage == OtaStage.FINISH:
                self._stage_finish(data)

    def _stage_idle(self, data: bytes) -> None:
        logger.info("ready to ota")
        if not data:
            logger.warning("empty ota command")
            return
        cmd = data[0]
        if cmd != OtaCommand.START:
            logger.warning("error cmd %d", cmd)
            self._respond(cmd, OtaStatus.ERR_CMD)
            return
        if len(data) != _START.size:
            logger.warning("error param length %d", len(data))
            self._respond(cmd, OtaStatus.ERR_PARAM)
            return

        _cmd, package_type, size, crc = _START.unpack(data)
        logger.info("package type %d, size %d, crc 0x%08x", package_type, size, crc)
        try:
            ota_type = OtaType(package_type)
        except ValueError:
            logger.warning("error package type %d", package_type)
            self._respond(cmd, OtaStatus.ERR_PARAM)
            return

        partition = self.partitions.get(ota_type)
        if partition is None:
            logger.warning("can not find partition")
            self._respond(cmd, OtaStatus.ERR_UNKNOWN)
            return

        logger.info("select partition %s", partition.label)
        capacity = partition.size
        if partition.kind == PartitionKind.FIRMWARE:
            capacity -= HEADER_SIZE
        if size > capacity:
            logger.warning("error package size %d > partition size %d", size, capacity)
            self._respond(cmd, OtaStatus.ERR_LENGTH)
            return

        if partition.kind == PartitionKind.APP:
            partition.erase(0, size)
        elif partition.kind == PartitionKind.FIRMWARE:
            partition.erase(0, partition.size)
            partition.write(0, build_header(size, crc))

        self._partition = partition
        self._package_size = size
        self._package_crc = crc
        self._package_received = 0
        self._retry = 0

        logger.info("ready to receive package")
        self._arm()
        self._stage = OtaStage.DATA
        self._respond(OtaCommand.START, OtaStatus.OK)
        self._request(0, min(size, PACKET_SIZE))

    def _stage_data(self, data: bytes) -> None:
        if not self._packet:
            if len(data) < _DATA_HEAD.size:
                logger.warning("error param length %d", len(data))
                self._respond(OtaCommand.DATA, OtaStatus.ERR_LENGTH)
                return
            cmd, offset, size, crc = _DATA_HEAD.unpack_from(data)
            if cmd == OtaCommand.FINISH:
                logger.warning("ota manual abort")
                self._terminate()
                self._respond(cmd, OtaStatus.ERR_ABORT)
                return
            if cmd != OtaCommand.DATA:
                logger.warning("error cmd %d", cmd)
                self._respond(cmd, OtaStatus.ERR_CMD)
                return
            if offset != self._request_offset or size != self._request_size:
                logger.warning(
                    "error offset %d != %d or size %d != %d",
                    offset, self._request_offset, size, self._request_size,
                )
                self._respond(OtaCommand.DATA, OtaStatus.ERR_PARAM)
                return
            self._packet_crc = crc
            data = data[_DATA_HEAD.size:]

        if (
            len(data) > self._request_size - len(self._packet)
            or len(data) > self._package_size - self._package_received
        ):
            logger.warning("error package/packet length %d", len(data))
            self._terminate()
            self._respond(OtaCommand.DATA, OtaStatus.ERR_LENGTH)
            return

        self._packet += data
        if len(self._packet) != self._request_size:
            return
        self._packet_complete()

    def _packet_complete(self) -> None:
        partition = self._partition
        assert partition is not None
        packet = bytes(self._packet)
        crc = _crc16(packet)
        if crc != self._packet_crc:
            self._retry += 1
            logger.warning(
                "packet crc check error 0x%04x != 0x%04x, retry %d times",
                crc, self._packet_crc, self._retry,
            )
            if self._retry >= MAX_RETRIES:
                self._terminate()
                self._respond(OtaCommand.DATA, OtaStatus.ERR_CRC)
                return
        else:
            self._retry = 0
            if partition.kind == PartitionKind.APP:
                partition.write(self._request_offset, packet)
            elif partition.kind == PartitionKind.FIRMWARE:
                partition.write(HEADER_SIZE + self._request_offset, packet)
            self._package_received += len(packet)
            logger.info("package received %d/%d", self._package_received, self._package_size)

        self._arm()
        if self._package_received < self._package_size:
            remaining = self._package_size - self._package_received
            self._request(self._package_received, min(remaining, PACKET_SIZE))
        elif self._package_received == self._package_size:
            self._check_package()
        else:
            self._terminate()
            self._respond(OtaCommand.DATA, OtaStatus.ERR_LENGTH)

    def _check_package(self) -> None:
        partition = self._partition
        assert partition is not None
        logger.info("package checking...")
        base = HEADER_SIZE if partition.kind == PartitionKind.FIRMWARE else 0
        crc = 0
        done = 0
        while True:
            chunk = min(self._package_size - done, PACKET_SIZE)
            crc = zlib.crc32(partition.read(base + done, chunk), crc)
            done += chunk
            if done >= self._package_size:
                break
        if crc != self._package_crc:
            logger.warning("package crc check error 0x%08x != 0x%08x", crc, self._package_crc)
            self._terminate()
            self._respond(OtaCommand.DATA, OtaStatus.ERR_CRC)
            return
        logger.info("package receive finish")
        self._stage = OtaStage.FINISH
        self._respond(OtaCommand.DATA, OtaStatus.OK)
        self._arm()

    def _stage_finish(self, data: bytes) -> None:
        logger.info("setup boot partition")
        if not data or data[0] != OtaCommand.FINISH:
            logger.warning("error cmd %s", data[:1].hex())
            self._respond(OtaCommand.FINISH, OtaStatus.ERR_CMD)
            return
        if self._partition is not None and self._partition.kind == PartitionKind.APP:
            self.boot_partition = self._partition
        logger.info("ota success")
        self._disarm()
        self._stage = OtaStage.IDLE
        self._respond(OtaCommand.FINISH, OtaStatus.OK)

    # -- control characteristic --------------------------------------------

    def handle_ctrl(self, data: bytes | bytearray | memoryview) -> None:
        """Process one write on the OTA control characteristic."""
        data = bytes(data)
        if len(data) < 4:
            return
        (magic,) = _U32.unpack_from(data)
        if magic != MAGIC:
            logger.warning("error magic 0x%08x", magic)
            self._respond_ctrl(OtaStatus.ERR_CMD)
            return
        if len(data) < 5:
            return
        cmd = data[4]
        if cmd not in (_CtrlCommand.APPLY_ESP, _CtrlCommand.APPLY_FW):
            logger.warning("unknown cmd %d", cmd)
            self._respond_ctrl(OtaStatus.ERR_CMD)
            return
        if len(data) < 9:
            return
        (mask,) = _U32.unpack_from(data, 5)

        if cmd == _CtrlCommand.APPLY_ESP:
            logger.info("apply esp mask 0x%08x", mask)
            if mask & 1:
                self._respond_ctrl(OtaStatus.OK)
                self._schedule_restart()
            else:
                logger.warning("error mask 0x%08x", mask)
                self._respond_ctrl(OtaStatus.ERR_CMD)
            return

        logger.info("apply fw mask 0x%08x", mask)
        with self._lock:
            self._apply(mask)

    def _schedule_restart(self) -> None:
        if self._finish_timer is not None:
            self._finish_timer.cancel()
        timer = threading.Timer(self.finish_delay, self._restart)
        timer.daemon = True
        self._finish_timer = timer
        timer.start()

    def _apply(self, mask: int) -> None:
        dfu_mask = 0
        if mask & (1 << OtaType.FW_APP):
            dfu_mask |= 1 << DfuType.APP
        logger.info("verify dfu mask 0x%08x", dfu_mask)
        try:
            ok = bool(self._apply_fw(dfu_mask))
        except Exception:
            logger.exception("firmware apply failed")
            ok = False
        self._respond_ctrl(OtaStatus.OK if ok else OtaStatus.ERR_UNKNOWN)

    # -- lifecycle ---------------------------------------------------------

    def on_timeout(self) -> None:
        """Abandon the transfer because the client went quiet."""
        with self._lock:
            logger.warning("ota timeout")
            self._terminate()
            self._respond(OtaCommand.DATA, OtaStatus.ERR_TIMEOUT)

    def close(self) -> None:
        """Cancel any pending timers."""
        with self._lock:
            self._disarm()
            if self._finish_timer is not None:
                self._finish_timer.cancel()
                self._finish_timer = None