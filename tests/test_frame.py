import pytest

from skybridge.crc import crc16
from skybridge.frame import (
    BASE_SIZE,
    Channel,
    Frame,
    FrameError,
    build_frame,
    frame_length,
    parse_frame,
    verify_frame,
)


def test_empty_esp_frame_wire_bytes():
    assert build_frame(Channel.ESP, b"") == b"\xaa\x00\x00\x00\x00\x00"


def test_header_layout():
    frame = build_frame(Channel.BLE, b"\x10\x20\x30")
    assert frame[:4] == b"\xaa\x01\x03\x00"
    assert frame[4:7] == b"\x10\x20\x30"
    assert len(frame) == 3 + BASE_SIZE


def test_crc_covers_channel_length_and_data_little_endian():
    frame = build_frame(Channel.BLE, b"hello")
    expected = crc16(frame[1:-2])
    assert int.from_bytes(frame[-2:], "little") == expected


@pytest.mark.parametrize(
    "channel, payload",
    [
        (Channel.ESP, b""),
        (Channel.BLE, b"\x12\x3a" + b"payload"),
        (Channel.ACK, bytes(range(256))),
        (Channel.ETH, b"\x00" * 1000),
    ],
)
def test_round_trip(channel, payload):
    frame = build_frame(channel, payload)
    assert verify_frame(frame)
    decoded = parse_frame(frame)
    assert decoded == Frame(channel=int(channel), payload=payload)
    assert decoded.encode() == frame


def test_frame_length_reads_header():
    frame = build_frame(Channel.WIFI, b"abcdef")
    assert frame_length(frame) == len(frame)
    assert frame_length(frame[:4]) == len(frame)


def test_frame_length_rejects_bad_magic():
    frame = bytearray(build_frame(Channel.ESP, b"x"))
    frame[0] = 0x55
    with pytest.raises(FrameError):
        frame_length(frame)


def test_frame_length_rejects_short_input():
    with pytest.raises(FrameError):
        frame_length(b"\xaa\x00")


def test_corrupted_payload_fails_crc():
    frame = bytearray(build_frame(Channel.BLE, b"data"))
    frame[5] ^= 0xFF
    assert verify_frame(frame) is False
    with pytest.raises(FrameError, match="crc"):
        parse_frame(frame)


def test_length_mismatch_is_rejected():
    frame = build_frame(Channel.BLE, b"data")
    assert verify_frame(frame + b"\x00") is False
    assert verify_frame(frame[:-1]) is False
    with pytest.raises(FrameError, match="length"):
        parse_frame(frame + b"\x00")


def test_too_short_frame_is_rejected():
    assert verify_frame(b"\xaa\x00\x00") is False
    with pytest.raises(FrameError):
        parse_frame(b"\xaa\x00\x00\x00\x00")


def test_bad_magic_is_rejected_by_verify():
    frame = bytearray(build_frame(Channel.ESP, b"\x00"))
    frame[0] = 0x00
    assert verify_frame(frame) is False


def test_oversized_payload_raises():
    with pytest.raises(ValueError):
        build_frame(Channel.BLE, b"\x00" * 0x10000)


def test_channel_out_of_range_raises():
    with pytest.raises(ValueError):
        build_frame(256, b"")


def test_ack_channel_byte_on_wire():
    frame = build_frame(Channel.ACK, b"\x01")
    assert frame[1] == 0xFF
    assert parse_frame(frame).channel == Channel.ACK