"""Serial link to the host controller: frame reception and raw send/receive."""

from __future__ import annotations

import contextlib
import logging
import struct
import threading
from collections.abc import Callable, Iterator
from typing import Optional, Protocol

from skybridge.frame import (
    BASE_SIZE,
    CHANNEL_COUNT,
    MAGIC,
    Channel,
    Frame,
    FrameError,
    parse_frame,
)

__all__ = ["UartLink", "RECV_BUFFER_SIZE", "MAX_RECV_PAYLOAD"]

logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 4096
MAX_RECV_PAYLOAD = RECV_BUFFER_SIZE - BASE_SIZE
_FIELD_TIMEOUT = 0.1
_BLOCK_TIMEOUT = 1.0


class _Port(Protocol):
    timeout: Optional[float]

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> object: ...

    def reset_input_buffer(self) -> None: ...


FrameHandler = Callable[[int, bytes], object]


class UartLink:
    """Frames received from a serial port are passed to ``handler(channel, payload)``.

    ``port`` behaves like a serial port: ``read(size)`` honouring a ``timeout``
    attribute in seconds, ``write(data)`` and ``reset_input_buffer()``.
    """

    def __init__(self, port: _Port, handler: Optional[FrameHandler] = None) -> None:
        self.port = port
        self.handler = handler
        self._send_locked = False
        self._recv_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def send_locked(self) -> bool:
        """Whether ordinary sends are currently suppressed."""
        return self._send_locked

    def send(self, data: bytes | bytearray | memoryview) -> bool:
        """Write ``data`` unless sending is locked; always returns True."""
        if not self._send_locked:
            self.port.write(bytes(data))
        return True

    def send_inlock(self, data: bytes | bytearray | memoryview) -> bool:
        """Write ``data`` even while sending is locked; always returns True."""
        self.port.write(bytes(data))
        return True

    def flush(self) -> None:
        """Discard any bytes waiting in the receive buffer."""
        self.port.reset_input_buffer()

    def recv(self, length: int, timeout: float) -> bytes:
        """Read up to ``length`` bytes, waiting at most ``timeout`` seconds."""
        return self._read(length, timeout)

    def lock_send(self) -> None:
        """Suppress ordinary sends until :meth:`unlock_send`."""
        self._send_locked = True

    def unlock_send(self) -> None:
        """Allow ordinary sends again."""
        self._send_locked = False

    @contextlib.contextmanager
    def internal_recv_paused(self) -> Iterator[UartLink]:
        """Hold the receiver off the port for the duration of the block."""
        with self._recv_lock:
            yield self

    def _read(self, size: int, timeout: float) -> bytes:
        if size <= 0:
            return b""
        self.port.timeout = timeout
        return bytes(self.port.read(size))

    def read_frame(self) -> Optional[Frame]:
        """Read one frame from the port.

        Returns None when the port times out, yields a non-magic byte or stops
        part-way through a frame. Raises FrameError for an unknown channel, an
        oversized length or a failed CRC check.
        """
        magic = self._read(1, _BLOCK_TIMEOUT)
        if len(magic) != 1 or magic[0] != MAGIC:
            return None

        channel = self._read(1, _FIELD_TIMEOUT)
        if len(channel) != 1:
            return None
        if channel[0] >= CHANNEL_COUNT and channel[0] != Channel.ACK:
            raise FrameError(f"recv channel unknown {channel[0]}")

        length_field = self._read(2, _FIELD_TIMEOUT)
        if len(length_field) != 2:
            return None
        (length,) = struct.unpack("<H", length_field)
        if length > MAX_RECV_PAYLOAD:
            raise FrameError(f"recv data length too large {length}")

        payload = self._read(length, _BLOCK_TIMEOUT)
        if len(payload) != length:
            return None

        crc = self._read(2, _FIELD_TIMEOUT)
        if len(crc) != 2:
            return None

        return parse_frame(magic + channel + length_field + payload + crc)

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._recv_lock:
                try:
                    frame = self.read_frame()
                except FrameError as exc:
                    logger.error("packet rejected: %s", exc)
                    continue
            if frame is None or self.handler is None:
                continue
            try:
                self.handler(frame.channel, frame.payload)
            except Exception:
                logger.exception("frame handler failed")

    def start(self) -> None:
        """Start the background receiver thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="com uart", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background receiver thread and wait for it to end."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None