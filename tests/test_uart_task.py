import pytest

from bleserial.serial_link import (
    BleStatus,
    ControlCommand,
    FrameOverflowError,
    LinkStatus,
    PacketParser,
    PacketType,
    format_packet,
)
from bleserial.uart_task import (
    GAP_AD_TYPE_COMPLETE_NAME,
    GAP_MAX_NAME_SIZE,
    KEY_LEN,
    SCAN_RSP_DATA_LEN,
    UartState,
    UartTask,
)


class FakeBackend:
    def __init__(self, connection_index=None, connection_status=BleStatus.ADVERTISING):
        self.connection_index = connection_index
        self.connection_status = connection_status
        self.shutting_down = False
        self.heap_full = False
        self.calls = []

    def message_heap_nearly_full(self):
        return self.heap_full

    def notify_tx(self, value):
        self.calls.append(("tx", value))

    def notify_product(self, value):
        self.calls.append(("product", value))

    def set_device_name(self, name):
        self.calls.append(("name", name))

    def set_scan_response(self, data):
        self.calls.append(("scan", data))

    def reset_chip(self):
        self.calls.append(("reset",))

    def tk_exchange(self, key, accept):
        self.calls.append(("tk", key, accept))

    def disconnect(self):
        self.calls.append(("disconnect",))

    def advertise_stop(self):
        self.calls.append(("adv_stop",))

    def set_adv_power(self, level):
        self.calls.append(("power", level))


def make_task(**kwargs):
    backend = FakeBackend(**kwargs)
    written = []
    task = UartTask(backend, written.append)
    task.enable()
    return task, backend, written


def decode(written):
    parser = PacketParser(2000)
    return [p for chunk in written for p in parser.feed(chunk)]


def ctrl(*payload):
    return format_packet(PacketType.CTRL_DATA, bytes(payload))


def test_state_transitions():
    backend = FakeBackend()
    task = UartTask(backend, lambda data: None)
    assert task.state is UartState.DISABLED
    task.enable()
    assert task.state is UartState.TX_READY
    task.send(PacketType.CTRL_DATA, b"\x01")
    assert task.state is UartState.TX_BUSY
    task.tx_done()
    assert task.state is UartState.TX_READY


def test_send_ctrl_writes_formatted_packet():
    task, _, written = make_task()
    task.send(PacketType.CTRL_DATA, b"abc")
    assert written == [format_packet(PacketType.CTRL_DATA, b"abc")]


def test_busy_queues_until_tx_done():
    task, _, written = make_task()
    task.send(PacketType.CTRL_DATA, b"first")
    task.send(PacketType.CTRL_DATA, b"second")
    assert len(written) == 1
    task.tx_done()
    assert [p.payload for p in decode(written)] == [b"first", b"second"]
    assert task.state is UartState.TX_BUSY
    task.tx_done()
    assert task.state is UartState.TX_READY


def test_ble_data_split_into_chunks():
    task, _, written = make_task()
    data = bytes(range(128))
    task.send(PacketType.BLE_DATA, data)
    packets = decode(written)
    assert [p.payload for p in packets] == [data[:64], data[64:]]
    assert all(p.status is LinkStatus.BLE_DATA for p in packets)


def test_ble_data_length_must_be_multiple_of_chunk():
    task, _, written = make_task()
    with pytest.raises(ValueError):
        task.send(PacketType.BLE_DATA, b"short")
    assert written == []


def test_unexpected_type_rejected():
    task, _, _ = make_task()
    with pytest.raises(ValueError):
        task.send(PacketType.PING, b"")


def test_oversized_packet_rejected():
    task, _, _ = make_task()
    with pytest.raises(ValueError):
        task.send(PacketType.CTRL_DATA, bytes(800))
    assert task.state is UartState.TX_READY


def test_receive_ble_data_forwarded():
    task, backend, _ = make_task()
    payload = b"hello peer"
    packets = task.receive(format_packet(PacketType.BLE_DATA, payload))
    assert backend.calls == [("tx", payload)]
    assert [p.payload for p in packets] == [payload]


def test_receive_split_across_calls():
    task, backend, _ = make_task()
    wire = format_packet(PacketType.BLE_DATA, b"split")
    assert task.receive(wire[:4]) == []
    task.receive(wire[4:])
    assert backend.calls == [("tx", b"split")]


def test_bad_checksum_ignored():
    task, backend, _ = make_task()
    wire = bytearray(format_packet(PacketType.BLE_DATA, b"data"))
    wire[4] ^= 0x01
    packets = task.receive(bytes(wire))
    assert backend.calls == []
    assert [p.status for p in packets] == [LinkStatus.ERR]


def test_heap_full_defers_processing():
    task, backend, _ = make_task()
    backend.heap_full = True
    assert task.receive(format_packet(PacketType.BLE_DATA, b"later")) == []
    assert backend.calls == []
    backend.heap_full = False
    task.receive(b"")
    assert backend.calls == [("tx", b"later")]


def test_frame_overflow_raises():
    task, _, _ = make_task()
    with pytest.raises(FrameOverflowError):
        task.receive(bytes((0x7E,)) + bytes(200))


def test_device_name_short():
    task, backend, _ = make_task()
    name = b"My BitBox"
    task.receive(ctrl(ControlCommand.DEVICE_NAME, *name))
    assert backend.calls == [
        ("name", name),
        ("scan", bytes((len(name) + 1, GAP_AD_TYPE_COMPLETE_NAME)) + name),
    ]


def test_device_name_truncated():
    task, backend, _ = make_task()
    name = bytes(b"n" * 40)
    task.receive(ctrl(ControlCommand.DEVICE_NAME, *name))
    (_, stored), (_, scan) = backend.calls
    assert stored == name[:GAP_MAX_NAME_SIZE]
    assert scan[0] == GAP_MAX_NAME_SIZE + 1
    assert scan[1] == GAP_AD_TYPE_COMPLETE_NAME
    assert scan[2:] == name[:SCAN_RSP_DATA_LEN - 2]


def test_product_string_only_when_connected():
    task, backend, _ = make_task()
    task.receive(ctrl(ControlCommand.PRODUCT_STRING, *b"prod"))
    assert backend.calls == []
    backend.connection_index = 0
    task.receive(ctrl(ControlCommand.PRODUCT_STRING, *b"prod"))
    assert backend.calls == [("product", b"prod")]


def test_chip_reset():
    task, backend, _ = make_task()
    task.receive(ctrl(ControlCommand.BLE_CHIP_RESET))
    assert backend.calls == [("reset",)]


def test_tk_confirm():
    task, backend, _ = make_task()
    key = bytes(range(1, KEY_LEN + 1))
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.TK_CONFIRM,)) + key + b"\x01")
    assert backend.calls == [("tk", key, 1)]


def test_tk_confirm_wrong_length_ignored():
    task, backend, _ = make_task()
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.TK_CONFIRM, 1, 2, 3)))
    assert backend.calls == []


def test_ble_status_request_reports_status():
    task, _, written = make_task(connection_status=BleStatus.CONNECTED_SECURE)
    task.receive(ctrl(ControlCommand.BLE_STATUS))
    (packet,) = decode(written)
    assert packet.payload == bytes((ControlCommand.BLE_STATUS, BleStatus.CONNECTED_SECURE))


def test_ble_status_wrong_length_ignored():
    task, _, written = make_task()
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.BLE_STATUS, 0)))
    assert written == []


def test_ble_disable_while_connected():
    task, backend, written = make_task(connection_index=0)
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.BLE_ENABLED, 0)))
    assert backend.shutting_down is True
    assert backend.calls == [("disconnect",)]
    task.tx_done()
    payloads = [p.payload for p in decode(written)]
    debug = bytes((ControlCommand.DEBUG_STR,))
    assert payloads == [debug + b"ble disabled", debug + b"app_easy_gap_disconnect"]


def test_ble_disable_while_advertising():
    task, backend, _ = make_task()
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.BLE_ENABLED, 0)))
    assert backend.calls == [("adv_stop",)]
    assert backend.shutting_down is True


def test_ble_enable_does_nothing():
    task, backend, written = make_task()
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.BLE_ENABLED, 1)))
    assert backend.calls == []
    assert backend.shutting_down is False
    assert written == []


@pytest.mark.parametrize("level,applied", [(1, True), (12, True), (0, False), (13, False)])
def test_power_level(level, applied):
    task, backend, _ = make_task()
    task.handle_rx(PacketType.CTRL_DATA, bytes((ControlCommand.BLE_PWR_LEVEL, level)))
    assert backend.calls == ([("power", level)] if applied else [])


def test_handle_rx_ble_data_is_error():
    task, _, _ = make_task()
    with pytest.raises(ValueError):
        task.handle_rx(PacketType.BLE_DATA, b"x")


def test_ack_and_ping_ignored():
    task, backend, written = make_task()
    task.receive(format_packet(PacketType.ACK, b"") + format_packet(PacketType.PING, b""))
    assert backend.calls == []
    assert written == []


def test_debug_message_payload():
    task, _, written = make_task()
    task.debug_message("hi")
    (packet,) = decode(written)
    assert packet.payload == bytes((ControlCommand.DEBUG_STR,)) + b"hi"