"""Framed, CRC-16 checked serial link between a BLE co-processor and its host."""

__version__ = "0.1.0"
__all__ = ["crc", "debug", "serial_link", "uart_task"]