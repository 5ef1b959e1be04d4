"""UART task that moves packets between the serial link and the BLE side.

Bytes coming from the host are decoded into packets. BLE data is forwarded
to the connected peer, and control packets are handled here. Outgoing packets
are sent one at a time. While a transmission is in flight, further requests
wait in a queue until ``tx_done`` is called.
"""

from __future__ import annotations

from collections import deque
from enum import Enum, auto
from typing import Callable, Protocol

from .serial_link import (
    BleStatus,
    ControlCommand,
    FrameOverflowError,
    LinkStatus,
    Packet,
    PacketParser,
    PacketType,
    format_packet,
)

TX_BUF_LEN = 700
RX_FRAME_CAPACITY = 100
BLE_CHUNK_LEN = 64

GAP_MAX_NAME_SIZE = 32
SCAN_RSP_DATA_LEN = 31
GAP_AD_TYPE_COMPLETE_NAME = 0x09
KEY_LEN = 16
MAX_ADV_POWER_LEVEL = 12


class UartState(Enum):
    """Transmit state of the task."""

    DISABLED = auto()
    TX_READY = auto()
    TX_BUSY = auto()


class BleBackend(Protocol):
    """The BLE side the task drives.

    ``connection_index`` is None while no peer is connected.
    """

    connection_index: int | None
    connection_status: int
    shutting_down: bool

    def message_heap_nearly_full(self) -> bool:
        """Report whether the message heap is close to exhaustion."""
        ...

    def notify_tx(self, value: bytes) -> None:
        """Send data to the peer on the TX characteristic."""
        ...

    def notify_product(self, value: bytes) -> None:
        """Send the product string to the peer."""
        ...

    def set_device_name(self, name: bytes) -> None:
        """Store the device name exposed over GAP."""
        ...

    def set_scan_response(self, data: bytes) -> None:
        """Replace the scan response advertising data."""
        ...

    def reset_chip(self) -> None:
        """Reset the BLE chip."""
        ...

    def tk_exchange(self, key: bytes, accept: int) -> None:
        """Answer a pairing temporary key request."""
        ...

    def disconnect(self) -> None:
        """Drop the current connection."""
        ...

    def advertise_stop(self) -> None:
        """Stop advertising."""
        ...

    def set_adv_power(self, level: int) -> None:
        """Set the advertising transmit power level."""
        ...


class UartTask:
    """Dispatches packets between the serial line and a BLE backend."""

    def __init__(self, backend: BleBackend, write: Callable[[bytes], object]) -> None:
        self._backend = backend
        self._write = write
        self._parser = PacketParser(RX_FRAME_CAPACITY)
        self._pending_rx = bytearray()
        self._saved: deque[tuple[int, bytes]] = deque()
        self.state = UartState.DISABLED

    def enable(self) -> None:
        """Start accepting traffic; the transmitter becomes ready."""
        self.state = UartState.TX_READY

    def receive(self, data: bytes | bytearray | memoryview) -> list[Packet]:
        """Consume bytes from the serial line and act on completed packets.

        When the backend's message heap is nearly full the bytes are held back
        and processed on a later call. Returns the packets decoded.
        """
        self._pending_rx += bytes(data)
        if self._backend.message_heap_nearly_full():
            return []
        chunk = bytes(self._pending_rx)
        self._pending_rx.clear()
        try:
            packets = self._parser.feed(chunk)
        except FrameOverflowError as exc:
            self._dispatch(exc.packets)
            raise
        self._dispatch(packets)
        return packets

    def _dispatch(self, packets: list[Packet]) -> None:
        for packet in packets:
            if packet.status is LinkStatus.BLE_DATA:
                self._backend.notify_tx(packet.payload)
            elif packet.status is LinkStatus.ERR:
                continue
            else:
                self.handle_rx(packet.packet_type, packet.payload)

    def handle_rx(self, packet_type: int, value: bytes) -> None:
        """Handle one received non-BLE packet."""
        if packet_type == PacketType.BLE_DATA:
            raise ValueError("BLE data must be forwarded, not handled")
        if packet_type != PacketType.CTRL_DATA or not value:
            return
        value = bytes(value)
        command = value[0]
        backend = self._backend

        if command == ControlCommand.DEVICE_NAME:
            self._set_device_name(value[1:])
        elif command == ControlCommand.PRODUCT_STRING:
            if backend.connection_index is not None:
                backend.notify_product(value[1:])
        elif command == ControlCommand.BLE_CHIP_RESET:
            backend.reset_chip()
        elif command == ControlCommand.TK_CONFIRM:
            if len(value) != KEY_LEN + 2:
                return
            backend.tk_exchange(value[1:1 + KEY_LEN], value[1 + KEY_LEN])
        elif command == ControlCommand.BLE_STATUS:
            if len(value) != 1:
                return
            self.notify_connection_status(backend.connection_status)
        elif command == ControlCommand.BLE_ENABLED:
            if len(value) != 2:
                return
            if value[1] == 0:
                self.debug_message("ble disabled")
                backend.shutting_down = True
                if backend.connection_index is not None:
                    self.debug_message("app_easy_gap_disconnect")
                    backend.disconnect()
                else:
                    backend.advertise_stop()
        elif command == ControlCommand.BLE_PWR_LEVEL:
            if len(value) != 2:
                return
            level = value[1]
            if 0 < level <= MAX_ADV_POWER_LEVEL:
                self.debug_message("ble level update")
                backend.set_adv_power(level)

    def _set_device_name(self, name: bytes) -> None:
        device_name = name[:GAP_MAX_NAME_SIZE]
        self._backend.set_device_name(device_name)
        # The length byte counts the GAP name, even when the scan response
        # only has room for a shorter prefix of it.
        scan_name = name[:min(len(device_name), SCAN_RSP_DATA_LEN - 2)]
        header = bytes(((len(device_name) + 1) & 0xFF, GAP_AD_TYPE_COMPLETE_NAME))
        self._backend.set_scan_response(header + scan_name)

    def send(self, packet_type: int, value: bytes | bytearray | memoryview) -> None:
        """Transmit a packet, or queue it while a transmission is in flight.

        BLE data is split into frames of 64 bytes and must come in multiples
        of that size.
        """
        body = bytes(value)
        if packet_type == PacketType.BLE_DATA:
            if len(body) % BLE_CHUNK_LEN:
                raise ValueError(
                    f"BLE data length {len(body)} is not a multiple of {BLE_CHUNK_LEN}"
                )
        elif packet_type != PacketType.CTRL_DATA:
            raise ValueError(f"unexpected packet type {packet_type}")

        if self.state is UartState.TX_BUSY:
            self._saved.append((packet_type, body))
            return

        if packet_type == PacketType.CTRL_DATA:
            out = format_packet(packet_type, body)
        else:
            out = b"".join(
                format_packet(packet_type, body[offset:offset + BLE_CHUNK_LEN])
                for offset in range(0, len(body), BLE_CHUNK_LEN)
            )
        if len(out) > TX_BUF_LEN:
            raise ValueError(f"encoded packet of {len(out)} bytes exceeds tx buffer")

        self.state = UartState.TX_BUSY
        self._write(out)

    def tx_done(self) -> None:
        """Mark the transmission finished and send the next queued packet."""
        self.state = UartState.TX_READY
        if self._saved:
            packet_type, body = self._saved.popleft()
            self.send(packet_type, body)

    def notify_connection_status(self, status: int) -> None:
        """Report the BLE connection status to the host."""
        self.send(PacketType.CTRL_DATA, bytes((ControlCommand.BLE_STATUS, BleStatus(status))))

    def debug_message(self, msg: str) -> None:
        """Send a debug string to the host."""
        self.send(PacketType.CTRL_DATA, bytes((ControlCommand.DEBUG_STR,)) + msg.encode())