"""
Block graph model.

A script is an arena of blocks addressed by dense integer BlockIds.
Edges between blocks are Ips: either a resolved block ID or a raw file
offset (unresolved during decoding, or a pointer into the stage header
which never becomes a block).
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, NewType, Optional, Union

from . import config
from .kinds import ElementType, KindTag, ValueKind

BlockId = NewType("BlockId", int)


class IpKind(IntEnum):
    OFFSET = 0
    BLOCK = 1


@dataclass(frozen=True, order=True)
class Ip:
    """A pointer which can be read as a file offset and then resolved to a block."""
    kind: IpKind
    value: int

    @classmethod
    def offset(cls, offset: int) -> "Ip":
        return cls(IpKind.OFFSET, offset)

    @classmethod
    def block(cls, block_id: int) -> "Ip":
        return cls(IpKind.BLOCK, block_id)

    @property
    def is_offset(self) -> bool:
        return self.kind == IpKind.OFFSET

    @property
    def is_block(self) -> bool:
        return self.kind == IpKind.BLOCK

    @property
    def is_in_header(self) -> bool:
        """True if this points inside the stage header."""
        return self.is_offset and self.value <= config.STAGE_HEADER_END

    def __repr__(self) -> str:
        if self.is_offset:
            return f"Offset(0x{self.value:X})"
        return f"Block({self.value})"

    def to_json(self) -> str:
        if self.is_offset:
            return f"0x{self.value:08X}"
        return f"block:{self.value}"


@dataclass
class Placeholder:
    """A block that has been referenced but not decoded yet."""

    def to_dict(self) -> dict:
        return {"type": "placeholder"}


@dataclass
class CodeBlock:
    """A basic block of commands with single points of entry and exit."""
    commands: list = field(default_factory=list)
    # Block to run after this one (fallthrough or jump target)
    next_block: Optional[Ip] = None
    # Block to run if the final condition fails
    else_block: Optional[Ip] = None

    @property
    def last(self):
        return self.commands[-1] if self.commands else None

    @property
    def ends_in_goto(self) -> bool:
        return self.last is not None and self.last.is_goto

    @property
    def falls_through(self) -> bool:
        """True if execution continues directly into next_block."""
        return self.next_block is not None and not self.ends_in_goto

    def to_dict(self) -> dict:
        d = {
            "type": "code",
            "commands": [str(c) for c in self.commands],
        }
        if self.next_block is not None:
            d["next"] = self.next_block.to_json()
        if self.else_block is not None:
            d["else"] = self.else_block.to_json()
        return d


@dataclass
class ObjBone:
    """A path to a bone in an object's model hierarchy."""
    obj: int
    path: List[int] = field(default_factory=list)


@dataclass
class ObjPair:
    """A pair of object IDs."""
    first: int
    second: int


@dataclass
class DataBlock:
    """
    A typed span of data.

    `value` depends on the kind:
      - integer arrays: list of ints
      - pointer arrays: list of Ips
      - obj_bone / obj_pair: ObjBone / ObjPair
      - string: bytes (without the NUL terminator)
    """
    kind: ValueKind
    value: object

    @property
    def is_pointer_array(self) -> bool:
        return self.kind.is_array and self.kind.array.is_pointer

    @property
    def element_type(self) -> Optional[ElementType]:
        return self.kind.array.element if self.kind.is_array else None

    def to_dict(self) -> dict:
        d = {"type": "data", "kind": str(self.kind)}
        if self.is_pointer_array:
            d["value"] = [ip.to_json() for ip in self.value]
        elif self.kind.is_array:
            d["value"] = list(self.value)
        elif self.kind.tag == KindTag.STRING:
            d["value"] = self.value.decode("cp1252", errors="replace")
        elif self.kind.tag == KindTag.OBJ_BONE:
            d["value"] = {"obj": self.value.obj, "path": list(self.value.path)}
        else:
            d["value"] = {"first": self.value.first, "second": self.value.second}
        return d


Block = Union[Placeholder, CodeBlock, DataBlock]
