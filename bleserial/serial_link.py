"""Framed, escaped and checksummed packets over a serial line.

A packet on the wire is ``SOF type len_lo len_hi payload crc_lo crc_hi SOF``
where every byte between the delimiters equal to SOF, ESCAPE or STX is sent
as ESCAPE followed by the byte XOR 0x20. The checksum covers type, length
and payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Callable, Iterable

from .crc import checksum

SOF = 0x7E
ESCAPE = 0x7D
ESCAPE_XOR = 0x20
STX = 0x02

MAX_PAYLOAD_LEN = 0xFFFF
DEFAULT_CAPACITY = 700

_HEADER_LEN = 3
_OVERHEAD = 5


class PacketType(IntEnum):
    """Packet type byte; the high and low nibbles are complements."""

    ACK = 0b00101101
    NAK = 0b01011010
    BLE_DATA = 0b00111100
    CTRL_DATA = 0b10110100
    PING = 0b01001011


class ControlCommand(IntEnum):
    """First payload byte of a control packet."""

    DEVICE_NAME = 1
    BOND_DB_GET = 2
    BOND_DB_SET = 3
    PAIRING_CODE = 4
    BLE_STATUS = 5
    IRK = 6
    PRODUCT_STRING = 7
    BLE_CHIP_RESET = 8
    IDENTITY_ADDRESS = 9
    PAIRING_SUCCESSFUL = 10
    TK_CONFIRM = 11
    BLE_ENABLED = 12
    BLE_PWR_LEVEL = 13
    DEBUG_STR = 254


class BleStatus(IntEnum):
    """Connection status reported to the host."""

    ADVERTISING = 0
    CONNECTED = 1
    CONNECTED_SECURE = 2


class LinkStatus(Enum):
    """Outcome of decoding one frame."""

    NONE = auto()
    ERR = auto()
    ACK = auto()
    NAK = auto()
    BLE_DATA = auto()
    CTRL_DATA = auto()
    PING = auto()


_STATUS_BY_TYPE = {
    PacketType.ACK: LinkStatus.ACK,
    PacketType.NAK: LinkStatus.NAK,
    PacketType.BLE_DATA: LinkStatus.BLE_DATA,
    PacketType.CTRL_DATA: LinkStatus.CTRL_DATA,
    PacketType.PING: LinkStatus.PING,
}


@dataclass(frozen=True)
class Packet:
    """A decoded frame. ``status`` is ERR when the checksum did not match."""

    packet_type: int
    payload: bytes
    status: LinkStatus


class FrameOverflowError(ValueError):
    """A frame grew to the parser's capacity before it was closed."""

    def __init__(self, capacity: int, packets: Iterable[Packet] = ()) -> None:
        super().__init__(f"frame exceeded capacity of {capacity} bytes")
        self.capacity = capacity
        self.packets = list(packets)


def escape_byte(value: int) -> bytes:
    """Return the wire encoding of one byte between the delimiters."""
    if not 0 <= value <= 0xFF:
        raise ValueError(f"not a byte: {value}")
    if value in (SOF, ESCAPE, STX):
        return bytes((ESCAPE, value ^ ESCAPE_XOR))
    return bytes((value,))


def format_packet(packet_type: int, payload: bytes | bytearray | memoryview) -> bytes:
    """Encode a packet of ``packet_type`` carrying ``payload`` for the wire."""
    body = bytes(payload)
    if len(body) > MAX_PAYLOAD_LEN:
        raise ValueError(f"payload of {len(body)} bytes is too long")
    if not 0 <= packet_type <= 0xFF:
        raise ValueError(f"packet type {packet_type} is not a byte")
    unescaped = bytes((packet_type,)) + len(body).to_bytes(2, "little") + body
    framed = unescaped + checksum(unescaped).to_bytes(2, "little")
    out = bytearray((SOF,))
    for byte in framed:
        out += escape_byte(byte)
    out.append(SOF)
    return bytes(out)


def parse_frame(frame: bytes | bytearray | memoryview) -> Packet | None:
    """Decode an unescaped frame, or return None if it carries no packet.

    Frames with an inconsistent length field or an unknown type with a valid
    checksum yield None; a checksum mismatch yields a packet with status ERR.
    """
    raw = bytes(frame)
    if len(raw) < _OVERHEAD:
        return None
    length = raw[1] | raw[2] << 8
    if len(raw) != length + _OVERHEAD:
        return None
    end = _HEADER_LEN + length
    expected = raw[end] | raw[end + 1] << 8
    payload = raw[_HEADER_LEN:end]
    if checksum(raw[:end]) != expected:
        return Packet(raw[0], payload, LinkStatus.ERR)
    try:
        packet_type = PacketType(raw[0])
    except ValueError:
        return None
    return Packet(packet_type, payload, _STATUS_BY_TYPE[packet_type])


class _State(Enum):
    WAIT = auto()
    ACCEPT = auto()
    ESCAPE = auto()


class PacketParser:
    """Incremental decoder for a byte stream of framed packets."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.reset()

    def reset(self) -> None:
        """Forget any partial frame and wait for the next delimiter."""
        self._state = _State.WAIT
        self._frame = bytearray()

    def feed(self, data: bytes | bytearray | memoryview) -> list[Packet]:
        """Consume ``data`` and return the packets completed by it, in order.

        Raises FrameOverflowError when a frame reaches the capacity; the
        packets completed before that are kept on the exception.
        """
        packets: list[Packet] = []
        for byte in bytes(data):
            if self._state is _State.WAIT:
                if byte == SOF:
                    self._state = _State.ACCEPT
            elif self._state is _State.ACCEPT:
                if byte == SOF:
                    if len(self._frame) >= _HEADER_LEN:
                        packet = parse_frame(self._frame)
                        if packet is not None:
                            packets.append(packet)
                    self._frame.clear()
                elif byte == ESCAPE:
                    self._state = _State.ESCAPE
                else:
                    self._frame.append(byte)
            else:
                self._frame.append(byte ^ ESCAPE_XOR)
                self._state = _State.ACCEPT

            if len(self._frame) >= self.capacity:
                self.reset()
                raise FrameOverflowError(self.capacity, packets)
        return packets


class SerialLink:
    """Blocking request/response exchange of control packets.

    ``read`` returns whatever bytes are available (possibly none) and
    ``write`` sends bytes.
    """

    def __init__(
        self,
        read: Callable[[], bytes],
        write: Callable[[bytes], object],
    ) -> None:
        self._read = read
        self._write = write
        self._parser = PacketParser(DEFAULT_CAPACITY)

    def request(self, command: int, max_len: int) -> bytes:
        """Send a control command and wait for the control reply.

        Returns at most ``max_len`` bytes of the reply after its command byte.
        Any other packet arriving first is an error.
        """
        self._write(format_packet(PacketType.CTRL_DATA, bytes((command,))))
        while True:
            chunk = self._read()
            if not chunk:
                continue
            for packet in self._parser.feed(chunk):
                if packet.status is LinkStatus.CTRL_DATA:
                    return packet.payload[1:1 + max_len]
                raise ValueError(
                    f"unexpected packet while waiting for reply: {packet.status.name}"
                )

    def bond_db_load(self, max_len: int) -> bytes:
        """Fetch the bond database."""
        return self.request(ControlCommand.BOND_DB_GET, max_len)

    def irk_load(self, max_len: int) -> bytes:
        """Fetch the identity resolving key."""
        return self.request(ControlCommand.IRK, max_len)

    def identity_address_load(self, max_len: int) -> bytes:
        """Fetch the identity address."""
        return self.request(ControlCommand.IDENTITY_ADDRESS, max_len)

    def device_name_load(self, max_len: int) -> bytes:
        """Fetch the device name."""
        return self.request(ControlCommand.DEVICE_NAME, max_len)