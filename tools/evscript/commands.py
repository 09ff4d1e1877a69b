"""
Event command codec.

A command is one opcode byte followed by its operands. Most commands are
a fixed operand list (see config.COMMAND_OPERANDS); the rest are decoded
by hand below.
"""

from dataclasses import dataclass, replace
from typing import BinaryIO, Iterator, Optional, Tuple

from . import config
from .binio import read_cstring, read_i16, read_ip, read_u8
from .block import Ip
from .errors import UnrecognizedCommand
from .expr import Expr, read_expr, read_operand, read_type, write_expr, write_operand


@dataclass(frozen=True)
class Command:
    """
    One decoded command.

    `args` by opcode:
      set:                 (value, target)
      if/elif/case/expr/while: (condition, else ip)
      goto/endif/break/run: (ip,)
      lib:                 (index,)
      printf:              (text bytes,)
      read:                (type, obj, path)
      everything else:     the operands in COMMAND_OPERANDS order
    """
    opcode: int
    args: Tuple = ()

    @property
    def name(self) -> str:
        return config.COMMAND_NAMES.get(self.opcode, f"cmd{self.opcode}")

    # -- control flow --

    @property
    def is_goto(self) -> bool:
        """True if the command always jumps to another offset."""
        return self.opcode in config.GOTO_COMMANDS

    @property
    def is_if(self) -> bool:
        return self.opcode in config.IF_COMMANDS

    @property
    def is_terminal(self) -> bool:
        return self.opcode in config.TERMINAL_COMMANDS

    @property
    def is_control_flow(self) -> bool:
        """True if the command may jump or end the event. Calls are not included."""
        return self.opcode in config.CONTROL_FLOW_COMMANDS

    @property
    def goto_target(self) -> Optional[Ip]:
        return self.args[0] if self.is_goto else None

    @property
    def else_target(self) -> Optional[Ip]:
        return self.args[1] if self.is_if else None

    @property
    def condition(self) -> Optional[Expr]:
        return self.args[0] if self.is_if else None

    @property
    def run_target(self) -> Optional[Ip]:
        return self.args[0] if self.opcode == config.CMD_RUN else None

    def with_goto_target(self, ip: Ip) -> "Command":
        if not self.is_goto:
            raise ValueError(f"{self.name} has no goto target")
        return replace(self, args=(ip,))

    def with_else_target(self, ip: Ip) -> "Command":
        if not self.is_if:
            raise ValueError(f"{self.name} has no else target")
        return replace(self, args=(self.args[0], ip))

    def with_run_target(self, ip: Ip) -> "Command":
        if self.opcode != config.CMD_RUN:
            raise ValueError(f"{self.name} has no run target")
        return replace(self, args=(ip,))

    # -- operands --

    def exprs(self) -> Iterator[Expr]:
        """Top-level expression operands."""
        for arg in self.args:
            if isinstance(arg, Expr):
                yield arg

    def ips(self) -> Iterator[Ip]:
        """Every pointer in the command, including those inside expressions."""
        for arg in self.args:
            if isinstance(arg, Ip):
                yield arg
            elif isinstance(arg, Expr):
                yield from arg.ips()

    def __str__(self) -> str:
        parts = []
        for arg in self.args:
            if isinstance(arg, Ip):
                parts.append(repr(arg))
            elif isinstance(arg, bytes):
                parts.append(repr(arg.decode("cp1252", errors="replace")))
            else:
                parts.append(str(arg))
        return f"{self.name}({', '.join(parts)})"

    # -- constructors used by tests and graph producers --

    @classmethod
    def abort(cls) -> "Command":
        return cls(config.CMD_ABORT)

    @classmethod
    def return_(cls) -> "Command":
        return cls(config.CMD_RETURN)

    @classmethod
    def goto(cls, ip: Ip) -> "Command":
        return cls(config.CMD_GOTO, (ip,))

    @classmethod
    def if_(cls, condition: Expr, else_ip: Ip) -> "Command":
        return cls(config.CMD_IF, (condition, else_ip))

    @classmethod
    def set(cls, value: Expr, target: Expr) -> "Command":
        return cls(config.CMD_SET, (value, target))

    @classmethod
    def run(cls, ip: Ip) -> "Command":
        return cls(config.CMD_RUN, (ip,))

    @classmethod
    def lib(cls, index: int) -> "Command":
        return cls(config.CMD_LIB, (index,))


def read_command(stream: BinaryIO) -> Command:
    opcode = read_u8(stream)
    if opcode == config.CMD_SET:
        # In-place assignments (a += b) store a single expression which is
        # both the value and, through its left operand, the target.
        value = read_expr(stream)
        target = value.lhs if value.is_assign else read_expr(stream)
        return Command(opcode, (value, target))
    if opcode in config.IF_COMMANDS:
        return Command(opcode, (read_expr(stream), read_ip(stream)))
    if opcode == config.CMD_LIB:
        return Command(opcode, (read_i16(stream),))
    if opcode == config.CMD_PRINTF:
        return Command(opcode, (read_cstring(stream),))
    if opcode == config.CMD_READ:
        read_type_code = read_type(stream, config.READ_TYPES)
        return Command(opcode, (read_type_code, read_expr(stream), read_expr(stream)))
    operands = config.COMMAND_OPERANDS.get(opcode)
    if operands is None:
        raise UnrecognizedCommand(opcode)
    return Command(opcode, tuple(read_operand(stream, kind) for kind in operands))


def write_command(command: Command, writer) -> None:
    """Encode `command` through a BlockWriter so pointers become fixups."""
    opcode = command.opcode
    args = command.args
    writer.write_u8(opcode)
    if opcode == config.CMD_SET:
        value, target = args
        write_expr(value, writer)
        if not value.is_assign:
            write_expr(target, writer)
    elif opcode in config.IF_COMMANDS:
        write_expr(args[0], writer)
        writer.write_ip(args[1])
    elif opcode == config.CMD_LIB:
        writer.write_i16(args[0])
    elif opcode == config.CMD_PRINTF:
        writer.write_cstring(args[0])
    elif opcode == config.CMD_READ:
        write_expr(Expr.imm32(args[0]), writer)
        write_expr(args[1], writer)
        write_expr(args[2], writer)
    else:
        operands = config.COMMAND_OPERANDS.get(opcode)
        if operands is None:
            raise UnrecognizedCommand(opcode)
        for kind, value in zip(operands, args):
            write_operand(writer, kind, value)
