import struct

from skybridge.channels import CharUuid
from skybridge.frame import Channel, build_frame, parse_frame
from skybridge.profiles import ProfileBridge
from skybridge.uart import UartLink


class FakeLink:
    def __init__(self):
        self.sent = []
        self.sent_inlock = []

    def send(self, data):
        self.sent.append(data)

    def send_inlock(self, data):
        self.sent_inlock.append(data)


class FakePort:
    def __init__(self):
        self.tx = bytearray()
        self.timeout = None

    def read(self, size):
        return b""

    def write(self, data):
        self.tx += data

    def reset_input_buffer(self):
        pass


def decode(raw):
    frame = parse_frame(raw)
    assert frame.channel == Channel.BLE
    (uuid,) = struct.unpack_from("<H", frame.payload)
    return uuid, frame.payload[2:]


def test_name_write_sends_nothing():
    link = FakeLink()
    ProfileBridge(link).name_write(b"new name")
    assert link.sent == [] and link.sent_inlock == []


def test_find_write_relayed():
    link = FakeLink()
    ProfileBridge(link).find_write(b"\x01\x02")
    assert link.sent_inlock == []
    assert [decode(raw) for raw in link.sent] == [(CharUuid.CTRL_FIND, b"\x01\x02")]


def test_find_write_wire_bytes():
    link = FakeLink()
    ProfileBridge(link).find_write(b"\x07")
    assert link.sent == [build_frame(Channel.BLE, b"\x13\x3a\x07")]


def test_misc_write_bypasses_lock():
    link = FakeLink()
    ProfileBridge(link).misc_write(b"\x05")
    assert link.sent == []
    assert [decode(raw) for raw in link.sent_inlock] == [(CharUuid.CTRL_MISC, b"\x05")]


def test_shell_send_encodes_command():
    link = FakeLink()
    bridge = ProfileBridge(link)
    bridge.shell_send("reboot\n")
    bridge.shell_write(b"ls")
    assert [decode(raw) for raw in link.sent] == [
        (CharUuid.TRACE_SHELL, b"reboot\n"),
        (CharUuid.TRACE_SHELL, b"ls"),
    ]


def test_set_reboot_payload():
    link = FakeLink()
    bridge = ProfileBridge(link)
    bridge.set_reboot(True)
    bridge.set_reboot(False)
    assert [decode(raw) for raw in link.sent_inlock] == [
        (CharUuid.CTRL_MISC, b"\x01\x01"),
        (CharUuid.CTRL_MISC, b"\x01\x00"),
    ]


def test_locked_uart_only_passes_reboot():
    port = FakePort()
    link = UartLink(port)
    bridge = ProfileBridge(link)
    link.lock_send()
    bridge.find_write(b"\x01")
    bridge.shell_send("help\n")
    bridge.set_reboot(False)
    expected = build_frame(Channel.BLE, struct.pack("<H", CharUuid.CTRL_MISC) + b"\x01\x00")
    assert bytes(port.tx) == expected