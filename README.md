# bleserial

`bleserial` implements the framed serial protocol spoken between a BLE
co-processor and the host microcontroller it serves. Packets are delimited by
`0x7E`, escaped with `0x7D` and XOR `0x20`, and protected by a CRC-16
(polynomial `0x8005`, reflected in and out, initial value and final XOR zero).

It has no dependencies beyond the standard library.

## Installation

From a checkout of the package:

```
pip install .
```

## Packet format

```
0x7E | type | len_lo | len_hi | payload ... | crc_lo | crc_hi | 0x7E
```

Every byte between the delimiters that equals `0x7E`, `0x7D` or `0x02` is
sent as `0x7D` followed by the byte XOR `0x20`. The checksum covers the type,
the two length bytes and the payload, and is sent least significant byte
first.

Packet types (`bleserial.serial_link.PacketType`): `ACK`, `NAK`, `BLE_DATA`,
`CTRL_DATA`, `PING`. The first payload byte of a control packet is a
`ControlCommand` (`DEVICE_NAME`, `BOND_DB_GET`, `IRK`, `IDENTITY_ADDRESS`,
`BLE_STATUS`, `TK_CONFIRM`, `DEBUG_STR` and others). Connection states are
given by `BleStatus`.

## Checksums

```python
from bleserial.crc import checksum, crc_init, crc_update, crc_finalize

checksum(b"123456789")

# or incrementally
crc = crc_init()
crc = crc_update(crc, b"1234")
crc = crc_update(crc, b"56789")
crc_finalize(crc)
```

`crc_reflect(data, width)` reverses the lowest `width` bits of a value.

## Encoding and decoding packets

```python
from bleserial.serial_link import PacketParser, PacketType, format_packet

wire = format_packet(PacketType.CTRL_DATA, b"\x01hello")

parser = PacketParser(capacity=700)
for packet in parser.feed(wire):
    print(packet.packet_type, packet.payload, packet.status)
```

- `format_packet(packet_type, payload)` returns the escaped, delimited frame.
  It raises `ValueError` for a payload longer than 65535 bytes or a type
  outside one byte.
- `escape_byte(value)` returns the wire encoding of a single byte.
- `parse_frame(frame)` decodes one unescaped frame (without delimiters) into a
  `Packet`, or returns `None` when the length field does not match or the type
  is unknown. A checksum mismatch gives a `Packet` whose `status` is
  `LinkStatus.ERR`.
- `PacketParser.feed(data)` accepts bytes in any chunking and returns the
  packets completed by them, in order. Partial frames are kept between calls;
  `reset()` discards them. A frame that reaches the parser's capacity raises
  `FrameOverflowError`, whose `packets` attribute holds the packets completed
  earlier in the same call.

## Blocking requests to the host

`SerialLink` sends a control command and waits for the control reply, given a
`read` function returning whatever bytes are available (possibly none) and a
`write` function that sends bytes:

```python
from bleserial.serial_link import SerialLink

link = SerialLink(read=port_read, write=port_write)
name = link.device_name_load(32)
```

`request(command, max_len)` returns at most `max_len` bytes of the reply after
its command byte. `bond_db_load`, `irk_load`, `identity_address_load` and
`device_name_load` are shortcuts for the matching commands. Any other packet
arriving before the reply raises `ValueError`. The call polls `read` until a
reply arrives; it has no timeout.

## The co-processor side

`bleserial.uart_task.UartTask(backend, write)` drives the co-processor end of
the link. The `backend` is any object satisfying the `BleBackend` protocol
(connection index and status, a `shutting_down` flag, and methods such as
`notify_tx`, `set_device_name`, `set_scan_response`, `tk_exchange`,
`disconnect` and `set_adv_power`).

- `receive(data)` decodes bytes from the host. BLE data is passed to
  `backend.notify_tx`; packets with a bad checksum are dropped; other packets
  go to `handle_rx`. While `backend.message_heap_nearly_full()` is true the
  bytes are held back and processed on a later call.
- `handle_rx(packet_type, value)` acts on control commands: device name (also
  rebuilding the scan response), product string, chip reset, TK confirmation,
  status query, BLE disable and advertising power level (1 to 12).
- `send(packet_type, value)` encodes and writes control data, or BLE data in
  64-byte frames (its length must be a multiple of 64). Encoded output is
  limited to 700 bytes. While a transmission is in flight (`state` is
  `UartState.TX_BUSY`) further sends are queued; `tx_done()` marks the
  transmission finished and sends the next queued one.
- `notify_connection_status(status)` and `debug_message(msg)` send the
  corresponding control packets.

## Diagnostics

`bleserial.debug.hex_dump(prefix, data)` returns a hex line and an aligned
character line. `memory_usage_line(name, usage, size)` returns a line such as
`ENV = 512 / 2048 (25%)`.

## What this package does not do

It opens no serial port and contains no BLE stack: bytes come in and go out
through the functions you pass, and all radio work is left to the
`BleBackend` you supply. It has no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```