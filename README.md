# skybridge

Protocol and state-machine logic for a bridge that sits between a phone (over
BLE) and a host microcontroller (over UART). Everything is plain Python with no
third-party dependencies. You supply the serial port, the partitions, the
notification sinks and the restart hooks as ordinary objects and callables.

## Modules

- `skybridge.crc`: checksums and table helpers.
  - `crc16` is CRC-16/XMODEM and `crc32` is IEEE CRC-32.
  - `crc32_append` feeds bytes into a raw CRC-32 register, with no initial or
    final inversion.
  - `crc8_lsb` and `crc8_msb` compute CRC-8.
  - `crc8_poly_lsb`, `crc8_poly_msb`, `crc16_poly_lsb`, `crc16_poly_msb`,
    `crc32_poly` and `crc64_poly` compute single table entries.
- `skybridge.crc64`: `crc64`, CRC-64 with the "Jones" coefficients.
- `skybridge.frame`: the serial frame `| 0xAA | channel | length | data | crc16 |`.
  - `build_frame(channel, payload)`, `parse_frame(frame)` (returns a `Frame`),
    `verify_frame(frame)` and `frame_length(frame)`.
  - `Channel` is an enum of the channels. `FrameError` is raised for malformed
    frames.
- `skybridge.dfu_transfer`: bootloader packets `| 0xAA | opcode | length | param | crc32 |`.
  - `build_packet` and `parse_packet` build and decode them. `parse_packet`
    raises `DfuError`.
  - `Opcode`, `Inquiry` and `DfuType` are the enums of the protocol.
  - `DfuClient` sends requests and reads replies.
    - `request` sends one request and returns the matching reply.
    - `get_bootloader_version` and `get_mtu_size` query the bootloader.
    - `reboot_system`, `erase_flash`, `write_flash` and `verify_flash` act on it.
- `skybridge.dfu`: staged firmware images.
  - `Partition` is an in-memory flash area in which erased bytes read as 0xFF.
    `PartitionKind` gives its type.
  - `FirmwareHeader`, `build_header` and `parse_header` handle the 64-byte
    image header.
  - `verify(partitions, mask)` checks the CRC of each staged image.
  - `start(client, partitions, mask)` flashes the selected images through a
    `DfuClient` and returns the names of the images it flashed.
- `skybridge.uart`: `UartLink` wraps a serial-like port. The port needs
  `read(size)`, `write(data)`, `reset_input_buffer()` and a `timeout` attribute.
  - `read_frame` reads one frame.
  - `start` and `stop` run a background receiver that passes each frame to
    `handler(channel, payload)`.
  - `send` is suppressed between `lock_send` and `unlock_send`; `send_inlock`
    always writes.
  - `flush` and `recv` give raw access to the port.
  - The context manager `internal_recv_paused()` keeps the receiver off the
    port while you read from it yourself.
- `skybridge.channels`: `Bridge.forward(channel, data)` routes a frame payload.
  - ESP-channel payloads are commands to the bridge (`EspCommand`), each
    acknowledged with a frame.
  - BLE-channel payloads are prefixed with a characteristic UUID (`CharUuid`)
    and are forwarded as notifications.
  - `AppId` lists the GATT application identifiers.
- `skybridge.profiles`: `ProfileBridge` relays writes to the find, misc and
  shell characteristics to the host as BLE-channel frames. Writes to the name
  characteristic are only logged.
  - `set_reboot(trap_boot)` asks the host to reboot.
  - `shell_send(cmd)` sends a shell line.
- `skybridge.ota`: `OtaSession` is the over-the-air update state machine.
  - `handle_data` processes writes on the data characteristic.
  - `handle_ctrl` processes writes on the control characteristic.
  - `on_timeout` ends a transfer whose client has gone quiet.
  - `close` cancels the session's timers.
  - `OtaType`, `OtaCommand`, `OtaStatus` and `OtaStage` are its enums.
- `skybridge.ble`: advertising payloads and notifications.
  - `build_adv_data(name, address)` and `build_scan_response(data)` build the
    advertising payloads.
  - `split_notifications(data, mtu)` splits data into notification-sized
    pieces.
  - `NotifyQueue` buffers notifications and holds them back while the link is
    congested.
  - `AdvertisingError` is raised when the advertising data cannot be built.
- `skybridge.runloop`: `RunLoop` runs queued callables in order on one
  background thread, with a bounded queue. It can be used as a context manager.

## Installation

```
pip install .
```

## Examples

Build and check a frame:

```python
from skybridge.frame import Channel, build_frame, parse_frame, verify_frame

raw = build_frame(Channel.ESP, b"\x00")
assert verify_frame(raw)
frame = parse_frame(raw)
print(frame.channel, frame.payload)
```

Talk to the bootloader over a `UartLink`, or over any object with `flush`,
`send_inlock` and `recv`:

```python
from skybridge.dfu_transfer import DfuClient
from skybridge.uart import UartLink

link = UartLink(port)  # port: an already opened serial-like object
client = DfuClient(link)
with link.internal_recv_paused():
    major, minor = client.get_bootloader_version()
    block = client.get_mtu_size()
```

Checksums:

```python
from skybridge.crc import crc16, crc32
from skybridge.crc64 import crc64

assert crc16(b"123456789") == 0x31C3
assert crc32(b"123456789") == 0xCBF43926
assert crc64(b"123456789") == 0xE9C6D914C4B8D9CA
```

## What the package does not do

- It does not open serial ports. `UartLink` uses whatever port object you give
  it.
- It has no Bluetooth stack: no GATT service tables, advertising radio or
  connection handling. `Bridge`, `NotifyQueue` and `OtaSession` call the
  functions you pass in.
- Flash partitions exist only in memory, as `Partition`, and there is no
  persistent settings storage.
- There is no command-line program.

## Running the tests

```
pip install ".[test]"
pytest
```