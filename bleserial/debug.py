"""Helpers that render diagnostic text."""

from __future__ import annotations


def hex_dump(prefix: str, data: bytes | bytearray | memoryview) -> str:
    """Render ``data`` as a hex line and an aligned character line.

    Printable bytes appear under their hex digits as `` c``; bytes below
    the space character appear as ``??``.
    """
    raw = bytes(data)
    hex_line = "".join(f"{byte:02x}" for byte in raw)
    char_line = "".join(f" {chr(byte)}" if byte >= 0x20 else "??" for byte in raw)
    return f"{prefix}{hex_line}\n{prefix}{char_line}\n"


def memory_usage_line(name: str, usage: int, size: int) -> str:
    """Render one heap's usage as ``name = usage / size (percent%)``."""
    if size <= 0:
        raise ValueError("heap size must be positive")
    return f"{name} = {usage} / {size} ({usage * 100 // size}%)\n"