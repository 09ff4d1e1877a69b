"""
Event expression codec.

Expressions are prefix-encoded trees: one opcode byte followed by the
operands the opcode calls for. Binary operators store the right operand
first. obj() expressions store a constant type expression and then the
operand that type calls for.
"""

from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Tuple

from . import config
from .binio import read_i16, read_i32, read_ip, read_u8
from .block import Ip
from .errors import NonConstantType, UnrecognizedExpr, UnrecognizedType

EXPR_NAMES = {
    value: name[3:].lower()
    for name, value in vars(config).items()
    if name.startswith("OP_")
}

OBJ_TYPES = config.OBJ_TYPES_OBJ | config.OBJ_TYPES_BONE | config.OBJ_TYPES_PAIR


@dataclass(frozen=True)
class Expr:
    op: int
    args: Tuple = ()

    # -- construction helpers --

    @classmethod
    def imm16(cls, value: int) -> "Expr":
        return cls(config.OP_CONST_16, (value,))

    @classmethod
    def imm32(cls, value: int) -> "Expr":
        return cls(config.OP_CONST_32, (value,))

    @classmethod
    def address_of(cls, ip: Ip) -> "Expr":
        return cls(config.OP_ADDRESS_OF, (ip,))

    @classmethod
    def stack(cls, index: int) -> "Expr":
        return cls(config.OP_STACK, (index,))

    @classmethod
    def parent_stack(cls, index: int) -> "Expr":
        return cls(config.OP_PARENT_STACK, (index,))

    @classmethod
    def variable(cls, index: int) -> "Expr":
        return cls(config.OP_VARIABLE, (cls.imm16(index),))

    @classmethod
    def binary(cls, op: int, lhs: "Expr", rhs: "Expr") -> "Expr":
        return cls(op, (lhs, rhs))

    @classmethod
    def array_element(cls, size: int, index: "Expr", address: "Expr") -> "Expr":
        return cls(config.OP_ARRAY_ELEMENT, (cls.imm32(size), index, address))

    @classmethod
    def obj(cls, obj_type: int, operand: "Expr") -> "Expr":
        return cls(config.OP_OBJ, (obj_type, operand))

    # -- queries --

    def value(self) -> Optional[int]:
        """The value of a constant expression, or None."""
        if self.op in (config.OP_CONST_16, config.OP_CONST_32):
            return self.args[0]
        return None

    @property
    def is_binary(self) -> bool:
        return self.op in config.BINARY_OPS

    @property
    def is_assign(self) -> bool:
        return self.op in config.ASSIGN_OPS

    @property
    def lhs(self) -> Optional["Expr"]:
        return self.args[0] if self.is_binary else None

    @property
    def rhs(self) -> Optional["Expr"]:
        return self.args[1] if self.is_binary else None

    @property
    def address(self) -> Optional[Ip]:
        """The pointer of an address_of() expression."""
        return self.args[0] if self.op == config.OP_ADDRESS_OF else None

    def walk(self) -> Iterator["Expr"]:
        """Yield this expression and every subexpression, depth first."""
        yield self
        for arg in self.args:
            if isinstance(arg, Expr):
                yield from arg.walk()

    def ips(self) -> Iterator[Ip]:
        for e in self.walk():
            if e.address is not None:
                yield e.address

    def __str__(self) -> str:
        name = EXPR_NAMES.get(self.op, f"op{self.op}")
        if self.op == config.OP_ADDRESS_OF:
            return f"@{self.args[0]!r}"
        if self.value() is not None:
            return str(self.value())
        if self.op == config.OP_OBJ:
            return f"obj({self.args[0]}, {self.args[1]})"
        return f"{name}({', '.join(str(a) for a in self.args)})"


def read_operand(stream: BinaryIO, kind: str):
    if kind == "expr":
        return read_expr(stream)
    if kind == "ip":
        return read_ip(stream)
    if kind == "u8":
        return read_u8(stream)
    if kind == "i16":
        return read_i16(stream)
    if kind == "i32":
        return read_i32(stream)
    raise ValueError(f"unknown operand kind: {kind}")


def write_operand(writer, kind: str, value) -> None:
    if kind == "expr":
        write_expr(value, writer)
    elif kind == "ip":
        writer.write_ip(value)
    elif kind == "u8":
        writer.write_u8(value)
    elif kind == "i16":
        writer.write_i16(value)
    elif kind == "i32":
        writer.write_i32(value)
    else:
        raise ValueError(f"unknown operand kind: {kind}")


def read_type(stream: BinaryIO, allowed) -> int:
    """Read a constant type expression and check it against `allowed`."""
    ty = read_expr(stream)
    value = ty.value()
    if value is None:
        raise NonConstantType(ty)
    if value not in allowed:
        raise UnrecognizedType(value)
    return value


def read_expr(stream: BinaryIO) -> Expr:
    op = read_u8(stream)
    if op in config.BINARY_OPS:
        rhs = read_expr(stream)
        lhs = read_expr(stream)
        return Expr(op, (lhs, rhs))
    if op == config.OP_OBJ:
        obj_type = read_type(stream, OBJ_TYPES)
        return Expr(op, (obj_type, read_expr(stream)))
    operands = config.EXPR_OPERANDS.get(op)
    if operands is None:
        raise UnrecognizedExpr(op)
    return Expr(op, tuple(read_operand(stream, kind) for kind in operands))


def write_expr(expr: Expr, writer) -> None:
    writer.write_u8(expr.op)
    if expr.is_binary:
        write_expr(expr.rhs, writer)
        write_expr(expr.lhs, writer)
        return
    if expr.op == config.OP_OBJ:
        obj_type, operand = expr.args
        write_expr(Expr.imm32(obj_type), writer)
        write_expr(operand, writer)
        return
    operands = config.EXPR_OPERANDS.get(expr.op)
    if operands is None:
        raise UnrecognizedExpr(expr.op)
    for kind, value in zip(operands, expr.args):
        write_operand(writer, kind, value)
