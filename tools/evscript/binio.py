"""
Little-endian stream helpers.

Reading goes through small helpers that fail loudly on truncated data.
Writing goes through BlockWriter, which records a fixup for every pointer
whose target offset is not known yet and writes a placeholder instead.
"""

import struct
from typing import BinaryIO, Callable, List, Tuple

from . import config
from .block import Ip


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly `size` bytes or raise EOFError."""
    offset = stream.tell()
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(
            f"unexpected end of stream at 0x{offset:X} "
            f"(wanted {size} bytes, got {len(data)})")
    return data


def read_struct(stream: BinaryIO, fmt: str):
    return struct.unpack("<" + fmt, read_exact(stream, struct.calcsize("<" + fmt)))[0]


def read_u8(stream: BinaryIO) -> int:
    return read_struct(stream, "B")


def read_i16(stream: BinaryIO) -> int:
    return read_struct(stream, "h")


def read_i32(stream: BinaryIO) -> int:
    return read_struct(stream, "i")


def read_u32(stream: BinaryIO) -> int:
    return read_struct(stream, "I")


def read_ip(stream: BinaryIO) -> Ip:
    return Ip.offset(read_u32(stream))


def read_cstring(stream: BinaryIO) -> bytes:
    """Read a NUL-terminated string, returning it without the terminator."""
    chars = bytearray()
    while True:
        c = read_exact(stream, 1)
        if c == b"\x00":
            return bytes(chars)
        chars += c


class BlockWriter:
    """
    Wraps a seekable output stream and defers pointer resolution.

    Pointers into the stage header are written directly. Every other
    pointer is recorded as a (stream offset, Ip) fixup and written as a
    placeholder until fix_offsets() patches it.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        # (offset, target) pairs which still need to be filled in
        self.fixups: List[Tuple[int, Ip]] = []

    def tell(self) -> int:
        return self.stream.tell()

    def write(self, data: bytes) -> None:
        self.stream.write(data)

    def write_struct(self, fmt: str, value) -> None:
        self.stream.write(struct.pack("<" + fmt, value))

    def write_u8(self, value: int) -> None:
        self.write_struct("B", value)

    def write_i16(self, value: int) -> None:
        self.write_struct("h", value)

    def write_i32(self, value: int) -> None:
        self.write_struct("i", value)

    def write_u32(self, value: int) -> None:
        self.write_struct("I", value)

    def write_cstring(self, value: bytes) -> None:
        self.stream.write(value + b"\x00")

    def write_ip(self, ip: Ip) -> None:
        if ip.is_in_header:
            # Header offsets don't have blocks
            self.write_u32(ip.value)
            return
        self.fixups.append((self.tell(), ip))
        self.stream.write(config.POINTER_PLACEHOLDER)

    def fix_offsets(self, resolve_ip: Callable[[Ip], int]) -> int:
        """
        Patch every recorded fixup with the offset returned by `resolve_ip`.

        Leaves the stream positioned where it was. Returns the number of
        fixups applied.
        """
        end = self.tell()
        count = len(self.fixups)
        for offset, ip in self.fixups:
            target = resolve_ip(ip)
            self.stream.seek(offset)
            self.write_u32(target)
        self.fixups.clear()
        self.stream.seek(end)
        return count
