"""
Shared helpers for building event script bytes by hand.

Every helper returns the encoded bytes of one command or expression, so
tests can lay code and data out at exact offsets with Image.place().
"""

import io
import struct

import pytest

from tools.evscript import config


def u8(v):
    return struct.pack("<B", v)


def i16(v):
    return struct.pack("<h", v)


def i32(v):
    return struct.pack("<i", v)


def u32(v):
    return struct.pack("<I", v)


# -- expressions --

def imm16(v):
    return u8(config.OP_CONST_16) + i16(v)


def imm32(v):
    return u8(config.OP_CONST_32) + i32(v)


def addr(offset):
    return u8(config.OP_ADDRESS_OF) + u32(offset)


def stack(index):
    return u8(config.OP_STACK) + u8(index)


def var(index):
    return u8(config.OP_VARIABLE) + imm16(index)


def binary(op, lhs, rhs):
    # Right operand first
    return u8(op) + rhs + lhs


def array_element(size, index, address):
    return u8(config.OP_ARRAY_ELEMENT) + imm32(size) + index + address


def deref(expr):
    """expr + address_of(0): use expr as an offset from the start of the file."""
    return binary(config.OP_ADD, expr, addr(0))


# -- commands --

def cmd_abort():
    return u8(config.CMD_ABORT)


def cmd_return():
    return u8(config.CMD_RETURN)


def cmd_goto(offset):
    return u8(config.CMD_GOTO) + u32(offset)


def cmd_if(cond, else_offset):
    return u8(config.CMD_IF) + cond + u32(else_offset)


def cmd_set(value, target):
    return u8(config.CMD_SET) + value + target


def cmd_run(offset):
    return u8(config.CMD_RUN) + u32(offset)


def cmd_lib(index):
    return u8(config.CMD_LIB) + i16(index)


def cmd_pushbp():
    return u8(config.CMD_PUSHBP)


def cmd_popbp():
    return u8(config.CMD_POPBP)


def cmd_setsp(expr):
    return u8(config.CMD_SETSP) + expr


def cmd_read(read_type, obj, path):
    return u8(config.CMD_READ) + imm32(read_type) + obj + path


def cmd_attach(obj, event):
    return u8(config.CMD_ATTACH) + obj + event


def cmd_printf(text):
    return u8(config.CMD_PRINTF) + text + b"\x00"


class Image:
    """A growable byte image with a zeroed header."""

    def __init__(self, size=config.STAGE_HEADER_END + 8):
        self.data = bytearray(size)

    def place(self, offset, *chunks):
        """Write chunks back to back starting at `offset`. Returns the end offset."""
        for chunk in chunks:
            end = offset + len(chunk)
            if end > len(self.data):
                self.data.extend(bytes(end - len(self.data)))
            self.data[offset:end] = chunk
            offset = end
        return offset

    def stream(self):
        return io.BytesIO(bytes(self.data))

    def write(self, path):
        path.write_bytes(bytes(self.data))
        return path


@pytest.fixture
def image():
    return Image()


@pytest.fixture
def three_blocks(image):
    """
    A (if, falls into B, else C), B (return), C (goto B), laid out [A][B][C].
    """
    a = 0x100
    b = a + len(cmd_if(imm16(1), 0))
    c = b + len(cmd_return())
    image.place(a, cmd_if(imm16(1), c))
    image.place(b, cmd_return())
    image.place(c, cmd_goto(b))
    return image, (a, b, c)
