"""Minimal PNG encoder for viewport captures. Stdlib only."""

from __future__ import annotations

import struct
import zlib

Pixel = tuple[int, int, int, int]


def _chunk(chunk_type: bytes, data: bytes) -> bytes:
    c = chunk_type + data
    return struct.pack(">I", len(data)) + c + struct.pack(">I", zlib.crc32(c) & 0xFFFFFFFF)


def make_png(width: int, height: int, pixels: list[list[Pixel]]) -> bytes:
    """Encode RGBA rows (``height`` rows of ``width`` pixels) as PNG."""
    header = b"\x89PNG\r\n\x1a\n"
    ihdr = _chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0))

    raw = bytearray()
    for row in pixels:
        raw += b"\x00"  # filter: none
        for r, g, b, a in row:
            raw += struct.pack("BBBB", r, g, b, a)

    idat = _chunk(b"IDAT", zlib.compress(bytes(raw)))
    iend = _chunk(b"IEND", b"")
    return header + ihdr + idat + iend


def png_size(data: bytes) -> tuple[int, int]:
    """Read width and height back out of a PNG header."""
    if data[:8] != b"\x89PNG\r\n\x1a\n" or data[12:16] != b"IHDR":
        raise ValueError("not a PNG image")
    return struct.unpack(">II", data[16:24])
