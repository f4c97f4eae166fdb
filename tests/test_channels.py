import struct

import pytest

from skybridge.channels import (
    DEFAULT_DEVICE_NAME,
    DEVICE_NAME_MAX,
    USER_DATA_MAX,
    Bridge,
    CharUuid,
    EspCommand,
)
from skybridge.frame import Channel, parse_frame


class FakeBle:
    def __init__(self, connected=False, mtu=23):
        self.connected = connected
        self.mtu = mtu
        self.adv = []
        self.ppcp = []
        self.notified = []

    def set_adv_data(self, name, data):
        self.adv.append((name, data))

    def set_ppcp(self, interval_min, interval_max, latency, timeout):
        self.ppcp.append((interval_min, interval_max, latency, timeout))

    def notify(self, uuid, data):
        self.notified.append((uuid, data))


@pytest.fixture
def setup():
    ble = FakeBle()
    sent = []
    restarts = []
    bridge = Bridge(ble, sent.append, lambda: restarts.append(True))
    return bridge, ble, sent, restarts


def acks(sent):
    frames = [parse_frame(raw) for raw in sent]
    assert all(f.channel == Channel.ESP for f in frames)
    return [f.payload for f in frames]


def test_status_acknowledged(setup):
    bridge, _ble, sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.STATUS]))
    assert acks(sent) == [bytes([EspCommand.STATUS, 1])]


def test_get_connect_reports_state(setup):
    bridge, ble, sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.BLE_GET_CONNECT]))
    ble.connected = True
    bridge.handle_esp(bytes([EspCommand.BLE_GET_CONNECT]))
    assert acks(sent) == [
        bytes([EspCommand.BLE_GET_CONNECT, 0]),
        bytes([EspCommand.BLE_GET_CONNECT, 1]),
    ]


def test_get_mtu(setup):
    bridge, ble, sent, _ = setup
    ble.mtu = 185
    bridge.handle_esp(bytes([EspCommand.BLE_GET_MTU]))
    assert acks(sent) == [bytes([EspCommand.BLE_GET_MTU]) + struct.pack("<H", 185)]


def test_reboot_restarts_then_acks(setup):
    bridge, _ble, sent, restarts = setup
    bridge.handle_esp(bytes([EspCommand.REBOOT]))
    assert restarts == [True]
    assert acks(sent) == [bytes([EspCommand.REBOOT, 1])]


@pytest.mark.parametrize(
    "cmd", [EspCommand.POWEROFF, EspCommand.SLEEP, EspCommand.SET_NVS, EspCommand.GET_NVS, 0x99]
)
def test_silent_commands(setup, cmd):
    bridge, _ble, sent, restarts = setup
    bridge.handle_esp(bytes([cmd]))
    assert sent == []
    assert restarts == []


def test_set_dev_name_truncates(setup):
    bridge, ble, sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.BLE_SET_DEV_NAME]) + b"A" * 25)
    assert bridge.device_name == b"A" * DEVICE_NAME_MAX
    assert ble.adv == [(b"A" * DEVICE_NAME_MAX, bytes(USER_DATA_MAX))]
    assert acks(sent) == [bytes([EspCommand.BLE_SET_DEV_NAME, 1])]


def test_set_user_data_keeps_default_name(setup):
    bridge, ble, sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.BLE_SET_USER_DATA]) + b"\x01\x02")
    expected = b"\x01\x02" + bytes(USER_DATA_MAX - 2)
    assert bridge.user_data == expected
    assert ble.adv == [(DEFAULT_DEVICE_NAME, expected)]
    assert DEFAULT_DEVICE_NAME == b"ELITE_UNKNOWN"
    assert acks(sent) == [bytes([EspCommand.BLE_SET_USER_DATA, 1])]


def test_set_user_data_is_bounded(setup):
    bridge, _ble, _sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.BLE_SET_USER_DATA]) + b"\xee" * 40)
    assert bridge.user_data == b"\xee" * USER_DATA_MAX


def test_set_ppcp(setup):
    bridge, ble, sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.BLE_SET_PPCP]) + struct.pack("<4H", 24, 40, 0, 500))
    assert ble.ppcp == [(24, 40, 0, 500)]
    assert acks(sent) == [bytes([EspCommand.BLE_SET_PPCP, 1])]


def test_set_ppcp_wrong_length(setup):
    bridge, ble, sent, _ = setup
    bridge.handle_esp(bytes([EspCommand.BLE_SET_PPCP]) + b"\x00" * 7)
    assert ble.ppcp == []
    assert acks(sent) == [bytes([EspCommand.BLE_SET_PPCP, 0])]


@pytest.mark.parametrize(
    "uuid", [CharUuid.CTRL_NAME, CharUuid.CTRL_FIND, CharUuid.TRACE_LOG, CharUuid.TRACE_SHELL]
)
def test_ble_payload_notified(setup, uuid):
    bridge, ble, _sent, _ = setup
    bridge.handle_ble(struct.pack("<H", uuid) + b"data")
    assert ble.notified == [(uuid, b"data")]


def test_ble_short_or_unknown_ignored(setup):
    bridge, ble, _sent, _ = setup
    bridge.handle_ble(b"\x12")
    bridge.handle_ble(struct.pack("<H", CharUuid.OTA_DATA) + b"x")
    assert ble.notified == []


def test_forward_routes_by_channel(setup):
    bridge, ble, sent, _ = setup
    bridge.forward(Channel.ESP, bytes([EspCommand.STATUS]))
    bridge.forward(Channel.BLE, struct.pack("<H", CharUuid.TRACE_LOG) + b"log")
    bridge.forward(Channel.WIFI, bytes([EspCommand.STATUS]))
    assert acks(sent) == [bytes([EspCommand.STATUS, 1])]
    assert ble.notified == [(CharUuid.TRACE_LOG, b"log")]