"""CRC-16 with polynomial 0x8005 and reflected input and output (CRC-16/ARC).

The register is updated bit by bit, least significant input bit first, and
reflected once at the end.
"""

from __future__ import annotations

WIDTH = 16
POLY = 0x8005
XOR_IN = 0x0000
XOR_OUT = 0x0000

_TOP_BIT = 1 << (WIDTH - 1)
_MASK = (1 << WIDTH) - 1


def crc_reflect(data: int, width: int) -> int:
    """Reverse the lowest ``width`` bits of ``data``."""
    result = data & 0x01
    for _ in range(1, width):
        data >>= 1
        result = (result << 1) | (data & 0x01)
    return result


def crc_init() -> int:
    """Return the initial register value."""
    return XOR_IN


def crc_update(crc: int, data: bytes | bytearray | memoryview) -> int:
    """Feed ``data`` into the register ``crc`` and return the new register."""
    for byte in bytes(data):
        for bit_index in range(8):
            bit = (crc & _TOP_BIT) ^ (_TOP_BIT if byte & (1 << bit_index) else 0)
            crc <<= 1
            if bit:
                crc ^= POLY
        crc &= _MASK
    return crc & _MASK


def crc_finalize(crc: int) -> int:
    """Turn a register value into the final checksum."""
    return crc_reflect(crc, WIDTH) ^ XOR_OUT


def checksum(data: bytes | bytearray | memoryview) -> int:
    """Return the checksum of ``data`` in one step."""
    return crc_finalize(crc_update(crc_init(), data))