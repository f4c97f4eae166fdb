"""Firmware images staged in local partitions and flashed through the bootloader."""

from __future__ import annotations

import logging
import struct
import time
import zlib
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum

from skybridge.dfu_transfer import DfuClient, DfuError, DfuType

__all__ = [
    "PartitionKind",
    "Partition",
    "FirmwareHeader",
    "parse_header",
    "build_header",
    "verify",
    "start",
    "HEADER_SIZE",
    "MAGIC",
]

logger = logging.getLogger(__name__)

HEADER_SIZE = 64
MAGIC = 0x1A2B3C4D
_BLOCK_SIZE = 4096
_PAUSE = 0.1
_HEADER = struct.Struct("<III")


class PartitionKind(IntEnum):
    """Partition types: application, data, or a staged controller firmware."""

    APP = 0x00
    DATA = 0x01
    FIRMWARE = 0x40


class Partition:
    """An in-memory flash partition; erased bytes read as 0xFF."""

    def __init__(self, label: str, size: int, kind: PartitionKind = PartitionKind.FIRMWARE) -> None:
        if size < 0:
            raise ValueError(f"negative partition size: {size}")
        self.label = label
        self.size = size
        self.kind = PartitionKind(kind)
        self._flash = bytearray(b"\xff" * size)

    def __repr__(self) -> str:
        return f"Partition({self.label!r}, {self.size}, {self.kind.name})"

    def _range(self, offset: int, size: int) -> slice:
        if offset < 0 or size < 0 or offset + size > self.size:
            raise ValueError(
                f"range {offset}+{size} outside partition {self.label!r} of {self.size} bytes"
            )
        return slice(offset, offset + size)

    def read(self, offset: int, size: int) -> bytes:
        """Return ``size`` bytes starting at ``offset``."""
        return bytes(self._flash[self._range(offset, size)])

    def write(self, offset: int, data: bytes | bytearray | memoryview) -> None:
        """Store ``data`` at ``offset``."""
        data = bytes(data)
        self._flash[self._range(offset, len(data))] = data

    def erase(self, offset: int, size: int) -> None:
        """Reset ``size`` bytes at ``offset`` to 0xFF."""
        self._flash[self._range(offset, size)] = b"\xff" * size


@dataclass(frozen=True)
class FirmwareHeader:
    """The header stored in front of a staged firmware image."""

    size: int
    crc: int


@dataclass(frozen=True)
class _Target:
    name: str
    type: DfuType
    address: int


_TARGETS = (_Target("app", DfuType.APP, 0x08010000),)


def parse_header(data: bytes | bytearray | memoryview) -> FirmwareHeader:
    """Decode a firmware header, raising DfuError on a bad magic."""
    data = bytes(data)
    if len(data) < _HEADER.size:
        raise DfuError(f"header too short: {len(data)} bytes")
    magic, size, crc = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise DfuError(f"magic mismatch 0x{magic:08x}")
    return FirmwareHeader(size=size, crc=crc)


def build_header(size: int, crc: int) -> bytes:
    """Return the 64-byte header for an image of ``size`` bytes and CRC-32 ``crc``."""
    return _HEADER.pack(MAGIC, size, crc).ljust(HEADER_SIZE, b"\x00")


def _selected(mask: int):
    for target in _TARGETS:
        if mask & (1 << target.type):
            yield target
        else:
            logger.info("skip %s", target.name)


def _blocks(partition: Partition, size: int, block_size: int):
    done = 0
    while True:
        chunk = min(size - done, block_size)
        yield done, partition.read(HEADER_SIZE + done, chunk)
        done += chunk
        if done >= size:
            break


def verify(partitions: Mapping[DfuType, Partition], mask: int) -> bool:
    """Check the CRC of every staged image selected by ``mask``.

    Missing partitions and images without a valid header are skipped.
    """
    match = True
    for target in _selected(mask):
        partition = partitions.get(target.type)
        if partition is None:
            logger.warning("partition %s not found", target.name)
            continue
        try:
            header = parse_header(partition.read(0, HEADER_SIZE))
        except DfuError as exc:
            logger.warning("%s %s", target.name, exc)
            continue
        logger.info("verify %s size %d crc 0x%08x", target.name, header.size, header.crc)
        crc = 0
        for _offset, block in _blocks(partition, header.size, _BLOCK_SIZE):
            crc = zlib.crc32(block, crc)
        if crc != header.crc:
            logger.warning("%s crc mismatch 0x%08x", target.name, crc)
            match = False
    return match


def start(client: DfuClient, partitions: Mapping[DfuType, Partition], mask: int) -> list[str]:
    """Flash every staged image selected by ``mask`` and return their names.

    Flashing stops quietly at a missing partition or an image without a valid
    header; a failed erase, write or verify raises DfuError.
    """
    major, minor = client.get_bootloader_version()
    logger.info("bootloader version %d.%d", major, minor)
    time.sleep(_PAUSE)

    block_size = client.get_mtu_size()
    logger.info("mtu size %d", block_size)
    if block_size == 0:
        raise DfuError("bootloader reported an mtu size of zero")
    time.sleep(_PAUSE)

    flashed = []
    for target in _selected(mask):
        partition = partitions.get(target.type)
        if partition is None:
            logger.warning("partition %s not found", target.name)
            break
        try:
            header = parse_header(partition.read(0, HEADER_SIZE))
        except DfuError as exc:
            logger.warning("%s", exc)
            break

        logger.info("flash %s size %d", target.name, header.size)
        client.erase_flash(target.address, header.size)
        logger.info("erase %s ok", target.name)

        for offset, block in _blocks(partition, header.size, block_size):
            percent = offset / header.size * 100.0 if header.size else 0.0
            logger.info("flashing %.2f%% %d/%d", percent, offset, header.size)
            client.write_flash(target.address + offset, block)

        client.verify_flash(target.address, header.size, header.crc)
        logger.info("verify %s ok", target.name)
        flashed.append(target.name)
    return flashed