"""
Exception types for reading and writing event scripts.

Script-level errors derive from ScriptError. Command codec errors derive
from CommandError and are wrapped by the reader and writer so the offset
of the failing command is preserved.
"""

from typing import Optional


class ScriptError(Exception):
    """Base class for errors raised while reading or writing a script."""


class InconsistentType(ScriptError):
    """A location was requested as two incompatible block kinds."""

    def __init__(self, offset: int, detail: str = ""):
        self.offset = offset
        message = f"block at 0x{offset:X} has an inconsistent type"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ReadCommandError(ScriptError):
    """The command codec failed to decode a command."""

    def __init__(self, offset: int, cause: Exception):
        self.offset = offset
        self.cause = cause
        super().__init__(f"failed to read command at 0x{offset:X}: {cause}")


class WriteCommandError(ScriptError):
    """The command codec failed to encode a command."""

    def __init__(self, cause: Exception, block: Optional[int] = None):
        self.cause = cause
        self.block = block
        where = f" in block {block}" if block is not None else ""
        super().__init__(f"failed to write command{where}: {cause}")


class MultiplePredecessors(ScriptError):
    """Two code blocks fall through into the same block."""

    def __init__(self, block: int, first: int, second: int):
        self.block = block
        self.first = first
        self.second = second
        super().__init__(
            f"block {block} is the fallthrough target of both "
            f"block {first} and block {second}")


class BrokenFallthrough(ScriptError):
    """A fallthrough successor cannot be placed right after its predecessor."""

    def __init__(self, block: int, next_block: int):
        self.block = block
        self.next_block = next_block
        super().__init__(
            f"block {next_block} must directly follow block {block} "
            f"but cannot be placed there")


class UnresolvedEdge(ScriptError):
    """An edge still refers to a file offset after resolution."""

    def __init__(self, block: int, ip):
        self.block = block
        self.ip = ip
        super().__init__(f"block {block} has an unresolved edge to {ip!r}")


class InvalidOffset(ScriptError):
    def __init__(self, offset: int):
        self.offset = offset
        super().__init__(f"offset 0x{offset:X} is not mapped to a block")


class InvalidId(ScriptError):
    def __init__(self, block: int):
        self.block = block
        super().__init__(f"ID {block} is not mapped to a block")


class MissingLayout(ScriptError):
    def __init__(self):
        super().__init__("script does not have layout information")


class UnresolvedPlaceholder(ScriptError):
    """A block was discovered but never decoded."""

    def __init__(self, block: int, offset: Optional[int] = None):
        self.block = block
        self.offset = offset
        where = f" at 0x{offset:X}" if offset is not None else ""
        super().__init__(f"block {block}{where} was never read")


class UnwrittenBlock(ScriptError):
    """A pointer targets a block which was never written."""

    def __init__(self, block: int):
        self.block = block
        super().__init__(f"block {block} was never written")


class InvalidLibrary(ScriptError):
    def __init__(self, index: int, count: int):
        self.index = index
        self.count = count
        super().__init__(
            f"invalid library index {index} ({count} library subroutines)")


# ============================================================
# Codec errors
# ============================================================

class CommandError(Exception):
    """Base class for command codec errors."""


class UnrecognizedCommand(CommandError):
    def __init__(self, opcode: int):
        self.opcode = opcode
        super().__init__(f"unrecognized command opcode: {opcode}")


class UnrecognizedExpr(CommandError):
    def __init__(self, opcode: int):
        self.opcode = opcode
        super().__init__(f"unrecognized expression opcode: {opcode}")


class NonConstantType(CommandError):
    def __init__(self, expr):
        self.expr = expr
        super().__init__(f"type expression is not a constant: {expr!r}")


class UnrecognizedType(CommandError):
    def __init__(self, value: int):
        self.value = value
        super().__init__(f"unrecognized type code: {value}")
